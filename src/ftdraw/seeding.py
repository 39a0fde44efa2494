"""Seeded shuffling and group distribution for draws.

The shuffle is a small linear congruential generator fed by a string hash.
It is not meant to be a good PRNG: the same seed must always give the same
permutation so a draw can be reproduced from the stored seed.
"""

from typing import Sequence, TypeVar

T = TypeVar("T")

POT_NUMBERS = (1, 2, 3, 4)

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


def _to_int32(value: int) -> int:
    """Wrap an integer to a signed 32-bit value."""
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_string(text: str) -> int:
    """Hash a string into a non-negative integer.

    Classic ``h * 31 + c`` rolling hash kept in signed 32-bit range at every
    step, absolute value at the end.

    Examples:
        >>> hash_string("")
        0
        >>> hash_string("a")
        97
        >>> hash_string("ab")
        3105
    """
    h = 0
    for char in text:
        h = _to_int32((h << 5) - h + ord(char))
    return abs(h)


def seeded_shuffle(items: Sequence[T], seed: str) -> list[T]:
    """Return a deterministic Fisher-Yates permutation of ``items``.

    Args:
        items: Items to shuffle (not modified)
        seed: Seed string; equal seeds give equal permutations

    Returns:
        New list with the shuffled items
    """
    result = list(items)
    state = hash_string(seed)

    for i in range(len(result) - 1, 0, -1):
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        j = int(state / LCG_MODULUS * (i + 1))
        result[i], result[j] = result[j], result[i]

    return result


def group_letters(count: int) -> list[str]:
    """Return group letters A, B, C, ... for ``count`` groups.

    Examples:
        >>> group_letters(4)
        ['A', 'B', 'C', 'D']
    """
    if count < 0 or count > 26:
        raise ValueError(f"Number of groups must be between 0 and 26, got {count}")
    return [chr(ord("A") + i) for i in range(count)]


def deal_round_robin(items: Sequence[T], num_groups: int) -> list[list[T]]:
    """Deal items into groups one at a time: A, B, C, A, B, C, ...

    Args:
        items: Items in draw order
        num_groups: Number of groups to create

    Returns:
        List of lists, one per group
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")

    groups: list[list[T]] = [[] for _ in range(num_groups)]
    for idx, item in enumerate(items):
        groups[idx % num_groups].append(item)
    return groups


def distribute_pots_snake(pots: dict[int, Sequence[T]], num_groups: int) -> list[list[T]]:
    """Distribute pot members into groups with a snake draft across pots.

    Pots are emptied in order 1 -> 4. Each placement puts the next member of
    the current pot into the current group and moves the group pointer,
    which bounces at both ends (A B C D D C B A A B ...). Group sizes never
    differ by more than one, and full pots of ``num_groups`` members give
    every group exactly one member of each pot.

    Args:
        pots: Pot number (1-4) -> members, already in draw order
        num_groups: Number of groups to create

    Returns:
        List of lists, one per group
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")

    # Fixed slots per pot number with a separate cursor per pot
    members = [list(pots.get(pot, [])) for pot in POT_NUMBERS]
    cursors = [0] * len(POT_NUMBERS)

    groups: list[list[T]] = [[] for _ in range(num_groups)]
    group_idx = 0
    direction = 1

    for pot_idx in range(len(POT_NUMBERS)):
        while cursors[pot_idx] < len(members[pot_idx]):
            groups[group_idx].append(members[pot_idx][cursors[pot_idx]])
            cursors[pot_idx] += 1

            group_idx += direction
            if group_idx >= num_groups:
                group_idx = num_groups - 1
                direction = -1
            elif group_idx < 0:
                group_idx = 0
                direction = 1

    return groups


def distribute_pots_strict(pots: dict[int, Sequence[T]], num_groups: int) -> list[list[T]]:
    """Fill groups pot by pot: every group takes exactly one team per pot.

    Every non-empty pot must hold exactly ``num_groups`` members.

    Raises:
        ValueError: If a non-empty pot has the wrong size
    """
    if num_groups < 1:
        raise ValueError(f"Number of groups must be at least 1, got {num_groups}")

    groups: list[list[T]] = [[] for _ in range(num_groups)]
    for pot in POT_NUMBERS:
        members = list(pots.get(pot, []))
        if not members:
            continue
        if len(members) != num_groups:
            raise ValueError(
                f"Pot {pot} has {len(members)} teams, expected exactly {num_groups}"
            )
        for group_idx, member in enumerate(members):
            groups[group_idx].append(member)
    return groups
