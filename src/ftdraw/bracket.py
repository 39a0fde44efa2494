"""Bracket generator for knockout, round robin and league formats.

Everything in this module is pure: functions build or mutate BracketData
in memory and never touch the database. Callers validate their input and
persist the result.
"""

import itertools
import logging
import math
import random
import string
from typing import Iterator, Optional

from ftdraw.models import (
    BYE,
    BracketData,
    BracketLane,
    BracketType,
    GroupStanding,
    Match,
    MatchStatus,
    PlayoffRound,
)

logger = logging.getLogger(__name__)

THIRD_PLACE = "Third Place"
GRAND_FINALS = "Grand Finals"


# ============================================================================
# Shape helpers
# ============================================================================


def next_power_of_2(n: int) -> int:
    """Return the next power of 2 >= n.

    Examples:
        >>> next_power_of_2(5)
        8
        >>> next_power_of_2(8)
        8
        >>> next_power_of_2(15)
        16
    """
    if n <= 1:
        return 1
    return 2 ** math.ceil(math.log2(n))


def _elimination_shape(team_count: int) -> tuple[int, int]:
    """Return (rounds, bracket_size) for a knockout bracket."""
    if team_count < 2:
        raise ValueError(f"A knockout bracket needs at least 2 teams, got {team_count}")
    bracket_size = next_power_of_2(team_count)
    return int(math.log2(bracket_size)), bracket_size


def get_round_name(round_number: int, total_rounds: int) -> str:
    """Get the display name of a knockout round by its distance to the final.

    Examples:
        >>> get_round_name(4, 4)
        'Final'
        >>> get_round_name(2, 4)
        'Quarter-Finals'
        >>> get_round_name(1, 7)
        'Round 1'
    """
    rounds_from_final = total_rounds - round_number
    names = {
        0: "Final",
        1: "Semi-Finals",
        2: "Quarter-Finals",
        3: "Round of 16",
        4: "Round of 32",
    }
    return names.get(rounds_from_final, f"Round {round_number}")


def compute_group_layout(team_count: int, group_count: Optional[int] = None) -> tuple[int, int]:
    """Return (group_count, teams_per_group).

    Defaults to groups of at most four teams.

    Examples:
        >>> compute_group_layout(16)
        (4, 4)
        >>> compute_group_layout(10)
        (3, 4)
        >>> compute_group_layout(10, 2)
        (2, 5)
    """
    if team_count < 1:
        raise ValueError(f"Cannot create groups with {team_count} teams")
    groups = group_count or math.ceil(team_count / 4)
    return groups, math.ceil(team_count / groups)


def generate_seed() -> str:
    """Generate a random seed string for a bracket."""
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choices(alphabet, k=22))


def _link_winners(rounds: list[PlayoffRound]) -> None:
    """Link every match to match floor(i/2) of the following round."""
    for current, following in zip(rounds, rounds[1:]):
        for idx, match in enumerate(current.matches):
            target = idx // 2
            if target < len(following.matches):
                match.next_match_id = following.matches[target].id


# ============================================================================
# Generators (one per format)
# ============================================================================


def generate_groups_only(
    team_count: int, group_count: Optional[int] = None, seed: Optional[str] = None
) -> BracketData:
    """Groups only: teams play round robin inside their group."""
    groups, per_group = compute_group_layout(team_count, group_count)
    return BracketData(
        type=BracketType.GROUPS_ONLY,
        group_count=groups,
        teams_per_group=per_group,
        seed=seed,
    )


def generate_single_elimination(
    team_count: int, third_place_match: bool = False, seed: Optional[str] = None
) -> BracketData:
    """Single elimination with BYEs for non power-of-2 team counts.

    The first ``bracket_size - team_count`` matches of round 1 are BYE
    matches: team1 (the higher seed) advances without playing.
    """
    rounds, bracket_size = _elimination_shape(team_count)
    bye_count = bracket_size - team_count
    match_ids = itertools.count(1)

    playoff_rounds = []
    for round_number in range(1, rounds + 1):
        matches = []
        for idx in range(bracket_size // 2**round_number):
            match = Match(id=f"match_{next(match_ids)}", round=round_number, match_number=idx + 1)
            if round_number == 1 and idx < bye_count:
                match.team2_id = BYE
                match.auto_advance = True
            matches.append(match)

        playoff_rounds.append(
            PlayoffRound(
                round_number=round_number,
                round_name=get_round_name(round_number, rounds),
                matches=matches,
                bracket=BracketLane.WINNERS,
            )
        )

    _link_winners(playoff_rounds)

    # Both semi-final losers drop into the third place match
    if third_place_match and rounds >= 2:
        third = Match(id=f"match_{next(match_ids)}", round=rounds + 1, match_number=1)
        for semi in playoff_rounds[rounds - 2].matches:
            semi.loser_next_match_id = third.id
        playoff_rounds.append(
            PlayoffRound(round_number=rounds + 1, round_name=THIRD_PLACE, matches=[third])
        )

    return BracketData(
        type=BracketType.SINGLE_ELIMINATION,
        playoff_rounds=playoff_rounds,
        third_place_match=third_place_match,
        seed=seed,
    )


def generate_double_elimination(team_count: int, seed: Optional[str] = None) -> BracketData:
    """Double elimination: winners bracket, losers bracket and grand final.

    Layout of ``playoff_rounds`` for R winners rounds:
        [0, R)              winners rounds
        [R, R + 2R - 2)     losers rounds (minor/major pairs)
        [R + 2R - 2]        grand final

    Loser routing:
        winners round 1    -> losers round 1, two losers per match
        winners round r    -> losers round 2r - 2, one loser per match
        winners final      -> losers final
    """
    rounds, bracket_size = _elimination_shape(team_count)
    bye_count = bracket_size - team_count
    match_ids = itertools.count(1)

    winners = []
    for round_number in range(1, rounds + 1):
        matches = []
        for idx in range(bracket_size // 2**round_number):
            match = Match(id=f"winners_{next(match_ids)}", round=round_number, match_number=idx + 1)
            if round_number == 1 and idx < bye_count:
                match.team2_id = BYE
                match.auto_advance = True
            matches.append(match)
        name = "Winners Final" if round_number == rounds else f"Winners Round {round_number}"
        winners.append(PlayoffRound(round_number, name, matches, BracketLane.WINNERS))

    loser_round_count = 2 * rounds - 2
    losers = []
    for r in range(1, loser_round_count + 1):
        divisor = 2 ** ((r + 1) // 2 + 1)
        match_count = -(-bracket_size // divisor)
        round_number = r + rounds
        matches = [
            Match(id=f"losers_{next(match_ids)}", round=round_number, match_number=idx + 1)
            for idx in range(match_count)
        ]
        name = "Losers Final" if r == loser_round_count else f"Losers Round {r}"
        losers.append(PlayoffRound(round_number, name, matches, BracketLane.LOSERS))

    final_number = rounds + loser_round_count + 1
    grand_final = PlayoffRound(
        round_number=final_number,
        round_name=GRAND_FINALS,
        matches=[Match(id=f"grand_final_{next(match_ids)}", round=final_number, match_number=1)],
        bracket=BracketLane.GRAND_FINAL,
    )

    _link_winners(winners)
    winners[-1].matches[0].next_match_id = grand_final.matches[0].id

    # Losers rounds alternate: same size (winners-bracket losers join) then half size
    for current, following in zip(losers, losers[1:]):
        halves = len(following.matches) < len(current.matches)
        for idx, match in enumerate(current.matches):
            match.next_match_id = following.matches[idx // 2 if halves else idx].id
    if losers:
        losers[-1].matches[0].next_match_id = grand_final.matches[0].id

    for r, winners_round in enumerate(winners):
        if r == rounds - 1:
            # With two teams there is no losers bracket: the rematch is the grand final
            target = losers[-1] if losers else grand_final
        else:
            target = losers[0] if r == 0 else losers[2 * r - 1]
        factor = 2 if r == 0 else 1
        for idx, match in enumerate(winners_round.matches):
            target_idx = min(idx // factor, len(target.matches) - 1)
            match.loser_next_match_id = target.matches[target_idx].id

    return BracketData(
        type=BracketType.DOUBLE_ELIMINATION,
        playoff_rounds=winners + losers + [grand_final],
        seed=seed,
    )


def round_robin_schedule(team_count: int) -> list[list[tuple[int, int]]]:
    """Circle method (Berger tables) pairings by round.

    Slot 0 stays fixed while slots 1..n-1 rotate. With an odd team count a
    dummy slot is added and its pairings are dropped (that team rests).

    Args:
        team_count: Number of teams (>= 2)

    Returns:
        One list of (slot_a, slot_b) pairs per round, 0-based slots

    Examples:
        >>> round_robin_schedule(4)
        [[(0, 3), (1, 2)], [(0, 1), (2, 3)], [(0, 2), (3, 1)]]
    """
    if team_count < 2:
        raise ValueError(f"Round robin needs at least 2 teams, got {team_count}")

    n = team_count if team_count % 2 == 0 else team_count + 1
    rotating = n - 1

    schedule = []
    for r in range(n - 1):
        pairs = [(0, (r + n - 2) % rotating + 1)]
        for i in range(1, n // 2):
            pairs.append(((r + i - 1) % rotating + 1, (r + n - 2 - i) % rotating + 1))
        schedule.append([(a, b) for a, b in pairs if a < team_count and b < team_count])
    return schedule


def _fixtures(team_count: int, id_prefix: str) -> list[Match]:
    matches = []
    match_ids = itertools.count(1)
    for round_idx, pairs in enumerate(round_robin_schedule(team_count)):
        for number, (slot_a, slot_b) in enumerate(pairs, start=1):
            matches.append(
                Match(
                    id=f"{id_prefix}_{next(match_ids)}",
                    round=round_idx + 1,
                    match_number=number,
                    team1_slot=slot_a,
                    team2_slot=slot_b,
                )
            )
    return matches


def generate_round_robin(team_count: int, seed: Optional[str] = None) -> BracketData:
    """Every team plays every other team exactly once."""
    return BracketData(type=BracketType.ROUND_ROBIN, matches=_fixtures(team_count, "rr"), seed=seed)


def generate_league(team_count: int, legs: int = 2, seed: Optional[str] = None) -> BracketData:
    """League: round robin first leg, optional return leg with home/away swapped."""
    first_leg = _fixtures(team_count, "leg1")
    matches = list(first_leg)

    if legs > 1:
        round_offset = max((m.round for m in first_leg), default=0)
        for idx, match in enumerate(first_leg, start=1):
            matches.append(
                Match(
                    id=f"leg2_{idx}",
                    round=match.round + round_offset,
                    match_number=match.match_number,
                    team1_id=match.team2_id,
                    team2_id=match.team1_id,
                    team1_slot=match.team2_slot,
                    team2_slot=match.team1_slot,
                )
            )

    return BracketData(type=BracketType.LEAGUE, matches=matches, seed=seed)


def generate_groups_with_knockout(
    team_count: int,
    group_count: Optional[int] = None,
    advancing_per_group: int = 2,
    third_place_match: bool = False,
    seed: Optional[str] = None,
) -> BracketData:
    """Group stage followed by a single elimination playoff."""
    groups, per_group = compute_group_layout(team_count, group_count)
    playoff = generate_single_elimination(groups * advancing_per_group, third_place_match, seed)

    return BracketData(
        type=BracketType.GROUPS_PLUS_KNOCKOUT,
        group_count=groups,
        teams_per_group=per_group,
        advancing_teams_per_group=advancing_per_group,
        playoff_rounds=playoff.playoff_rounds,
        third_place_match=third_place_match,
        seed=seed,
    )


def generate_bracket(
    bracket_type: BracketType,
    team_count: int,
    group_count: Optional[int] = None,
    advancing_per_group: int = 2,
    third_place_match: bool = False,
    seed: Optional[str] = None,
    league_legs: int = 2,
) -> BracketData:
    """Generate the structure of a competition.

    Args:
        bracket_type: Competition format
        team_count: Number of teams taking part
        group_count: Number of groups (group formats; default ceil(teams/4))
        advancing_per_group: Teams per group reaching the knockout stage
        third_place_match: Add a third place play-off (knockout formats)
        seed: Seed string stored with the bracket (random when omitted)
        league_legs: 1 or 2 legs (league format)

    Returns:
        BracketData with rounds and match links, team slots still empty
    """
    bracket_type = BracketType(bracket_type)
    seed = seed or generate_seed()

    generators = {
        BracketType.GROUPS_ONLY: lambda: generate_groups_only(team_count, group_count, seed),
        BracketType.SINGLE_ELIMINATION: lambda: generate_single_elimination(
            team_count, third_place_match, seed
        ),
        BracketType.DOUBLE_ELIMINATION: lambda: generate_double_elimination(team_count, seed),
        BracketType.ROUND_ROBIN: lambda: generate_round_robin(team_count, seed),
        BracketType.LEAGUE: lambda: generate_league(team_count, league_legs, seed),
        BracketType.GROUPS_PLUS_KNOCKOUT: lambda: generate_groups_with_knockout(
            team_count, group_count, advancing_per_group, third_place_match, seed
        ),
    }
    bracket = generators[bracket_type]()
    logger.debug("Generated %s for %d teams", bracket, team_count)
    return bracket


def group_fixtures(group_letter: str, team_ids: list[str]) -> list[Match]:
    """Round robin fixtures for one drawn group, team ids filled in."""
    if len(team_ids) < 2:
        return []
    matches = _fixtures(len(team_ids), f"group_{group_letter}")
    for match in matches:
        match.group_letter = group_letter
        match.team1_id = team_ids[match.team1_slot]
        match.team2_id = team_ids[match.team2_slot]
    return matches


# ============================================================================
# Seeding teams into a bracket
# ============================================================================


def _team_at(entries: list[str], idx: int) -> Optional[str]:
    return entries[idx] if 0 <= idx < len(entries) else None


def place_teams(bracket: BracketData, team_ids: list[str]) -> BracketData:
    """Fill the team slots of a freshly generated bracket.

    Knockout formats: ``team_ids`` are in seed order. BYE matches take the
    top seeds as team1, the remaining teams meet best against worst.
    Round robin and league: ``team_ids[slot]`` goes into each fixture slot.

    BYE matches are resolved immediately, so top seeds already sit in
    round 2 when this returns.
    """
    if bracket.playoff_rounds and bracket.type != BracketType.GROUPS_ONLY:
        first_round = bracket.playoff_rounds[0].matches
        byes = [m for m in first_round if m.is_bye]
        playing = [m for m in first_round if not m.is_bye]

        if len(team_ids) > len(byes) + 2 * len(playing):
            raise ValueError(
                f"Bracket has room for {len(byes) + 2 * len(playing)} teams, got {len(team_ids)}"
            )

        for match, team_id in zip(byes, team_ids):
            match.team1_id = team_id

        remaining = team_ids[len(byes):]
        for idx, match in enumerate(playing):
            match.team1_id = _team_at(remaining, idx)
            match.team2_id = _team_at(remaining, len(remaining) - 1 - idx)
            if len(remaining) - 1 - idx <= idx:
                match.team2_id = None

        resolve_byes(bracket)

    for match in bracket.matches:
        if match.team1_slot is not None:
            match.team1_id = _team_at(team_ids, match.team1_slot)
        if match.team2_slot is not None:
            match.team2_id = _team_at(team_ids, match.team2_slot)

    return bracket


def seed_teams_into_bracket(
    group_standings: dict[str, list[GroupStanding]],
    advancing_per_group: int,
    bracket: BracketData,
) -> BracketData:
    """Seed group qualifiers into the first knockout round.

    With an even number of groups and two qualifiers per group, winners and
    runners-up are crossed so group winners cannot meet before the
    semi-finals:

        1A v 2B     1C v 2D
        2A v 1B     2C v 1D

    Otherwise (odd group count, more qualifiers per group, a group too small
    to supply two, or BYEs in the first round) qualifiers are ordered by group position and seeded best
    against worst.

    Args:
        group_standings: Group letter -> sorted standings, in group order
        advancing_per_group: Qualifiers per group
        bracket: Bracket whose first playoff round receives the teams

    Returns:
        The same bracket, with first round team slots filled
    """
    if not bracket.playoff_rounds:
        return bracket

    winners: list[str] = []
    runners_up: list[tuple[int, str]] = []
    for standings in group_standings.values():
        for standing in standings[:advancing_per_group]:
            if standing.position == 1:
                winners.append(standing.team_id)
            else:
                runners_up.append((standing.position, standing.team_id))

    num_groups = len(group_standings)
    first_round = bracket.playoff_rounds[0].matches
    crossable = (
        num_groups >= 2
        and num_groups % 2 == 0
        and advancing_per_group == 2
        and all(len(standings) >= 2 for standings in group_standings.values())
        and not any(m.is_bye for m in first_round)
    )

    if not crossable:
        # Stable sort keeps group order among equal positions
        ordered = winners + [team for _, team in sorted(runners_up, key=lambda r: r[0])]
        return place_teams(bracket, ordered)

    seconds = [team for _, team in runners_up]
    pairings = []
    for i in range(0, num_groups - 1, 2):
        pairings.append((_team_at(winners, i), _team_at(seconds, i + 1)))
    for i in range(0, num_groups - 1, 2):
        pairings.append((_team_at(seconds, i), _team_at(winners, i + 1)))

    for match, (team1, team2) in zip(first_round, pairings):
        if team1:
            match.team1_id = team1
        if team2:
            match.team2_id = team2

    return bracket


# ============================================================================
# Advancement
# ============================================================================


def iter_matches(bracket: BracketData) -> Iterator[Match]:
    """Yield every match of the bracket: playoff, flat fixtures, group fixtures."""
    for playoff_round in bracket.playoff_rounds:
        yield from playoff_round.matches
    yield from bracket.matches
    for fixtures in bracket.group_matches.values():
        yield from fixtures


def find_match(bracket: BracketData, match_id: str) -> Optional[Match]:
    """Return the match with ``match_id`` or None."""
    return next((m for m in iter_matches(bracket) if m.id == match_id), None)


def _locate(bracket: BracketData) -> dict[str, tuple[PlayoffRound, int]]:
    """Map playoff match id -> (round, index within round)."""
    located = {}
    for playoff_round in bracket.playoff_rounds:
        for idx, match in enumerate(playoff_round.matches):
            located[match.id] = (playoff_round, idx)
    return located


def _preferred_slot(source: PlayoffRound, source_idx: int, target: PlayoffRound) -> int:
    """Pick the slot (1 or 2) a team coming from ``source`` should take in ``target``."""
    if target.bracket == BracketLane.GRAND_FINAL:
        return 1 if source.bracket == BracketLane.WINNERS else 2
    if target.bracket == BracketLane.LOSERS and source.bracket == BracketLane.WINNERS:
        # Losers dropping in from a later winners round face a losers-bracket survivor
        if len(source.matches) > len(target.matches):
            return 1 if source_idx % 2 == 0 else 2
        return 2
    if len(target.matches) < len(source.matches):
        return 1 if source_idx % 2 == 0 else 2
    return 1


def _place_team(
    located: dict[str, tuple[PlayoffRound, int]], source_id: str, target_id: str, team_id: str
) -> None:
    source_round, source_idx = located[source_id]
    target_round, target_idx = located[target_id]
    target = target_round.matches[target_idx]

    slot = _preferred_slot(source_round, source_idx, target_round)
    if slot == 1 and target.team1_id is None:
        target.team1_id = team_id
    elif slot == 2 and target.team2_id is None:
        target.team2_id = team_id
    elif target.team1_id is None:
        target.team1_id = team_id
    elif target.team2_id is None:
        target.team2_id = team_id
    else:
        raise ValueError(f"Match {target.id} already has two teams")

    _resolve_bye(located, target)


def _resolve_bye(located: dict[str, tuple[PlayoffRound, int]], match: Match) -> None:
    """Complete a match whose opponent is a BYE."""
    if match.is_completed or match.team1_id is None or match.team2_id is None:
        return
    if BYE not in (match.team1_id, match.team2_id):
        return
    match.auto_advance = True
    winner = match.team2_id if match.team1_id == BYE else match.team1_id
    _complete_knockout(located, match, winner)


def _complete_knockout(
    located: dict[str, tuple[PlayoffRound, int]], match: Match, winner_id: str
) -> None:
    loser_id = match.team2_id if winner_id == match.team1_id else match.team1_id
    match.winner_id = winner_id
    match.loser_id = loser_id
    match.status = MatchStatus.COMPLETED

    if match.next_match_id and winner_id:
        _place_team(located, match.id, match.next_match_id, winner_id)
    if match.loser_next_match_id and loser_id:
        _place_team(located, match.id, match.loser_next_match_id, loser_id)



def _withdraw_previous_result(located: dict[str, tuple[PlayoffRound, int]], match: Match) -> None:
    """Take the previous winner/loser back out of the follow-up matches."""
    targets = []
    for target_id, team_id in (
        (match.next_match_id, match.winner_id),
        (match.loser_next_match_id, match.loser_id),
    ):
        if not target_id or not team_id:
            continue
        target_round, target_idx = located[target_id]
        target = target_round.matches[target_idx]
        if target.is_completed:
            raise ValueError(f"Cannot change {match.id}: {target.id} has already been played")
        targets.append((target, team_id))

    for target, team_id in targets:
        if target.team1_id == team_id:
            target.team1_id = None
        elif target.team2_id == team_id:
            target.team2_id = None

    match.winner_id = None
    match.loser_id = None
    match.manual_winner_id = None
    match.is_manual_override = False


def resolve_byes(bracket: BracketData) -> BracketData:
    """Advance every team that faces a BYE, round by round."""
    located = _locate(bracket)
    for playoff_round in bracket.playoff_rounds:
        for match in playoff_round.matches:
            _resolve_bye(located, match)
    return bracket


def _score_winner(match: Match, team1_score: Optional[int], team2_score: Optional[int]) -> Optional[str]:
    if team1_score is None or team2_score is None:
        return None
    if team1_score > team2_score:
        return match.team1_id
    if team2_score > team1_score:
        return match.team2_id
    return None


def record_result(
    bracket: BracketData,
    match_id: str,
    team1_score: Optional[int] = None,
    team2_score: Optional[int] = None,
    advancing_team_id: Optional[str] = None,
    status: Optional[MatchStatus] = None,
) -> Match:
    """Enter a score and, for knockout matches, advance the winner.

    A match becomes COMPLETED when both scores are known (or when ``status``
    says so). Knockout matches then need a winner: the higher score, or
    ``advancing_team_id`` when the score is level (penalties) or the
    organizer overrides the result. Nothing is changed when the result is
    rejected.

    Raises:
        KeyError: Unknown match id
        ValueError: Invalid result for this match
    """
    match = find_match(bracket, match_id)
    if match is None:
        raise KeyError(match_id)

    located = _locate(bracket)
    is_knockout = match_id in located

    if advancing_team_id is not None and advancing_team_id not in (match.team1_id, match.team2_id):
        raise ValueError(f"Team {advancing_team_id} does not play in match {match_id}")

    new_team1_score = match.team1_score if team1_score is None else team1_score
    new_team2_score = match.team2_score if team2_score is None else team2_score

    if status is not None:
        new_status = MatchStatus(status)
    elif new_team1_score is not None and new_team2_score is not None:
        new_status = MatchStatus.COMPLETED
    elif advancing_team_id is not None:
        new_status = MatchStatus.COMPLETED
    else:
        new_status = match.status

    score_winner = _score_winner(match, new_team1_score, new_team2_score)
    winner_id = advancing_team_id or score_winner

    if is_knockout and new_status == MatchStatus.COMPLETED:
        if match.team1_id is None or match.team2_id is None:
            raise ValueError(f"Match {match_id} does not have two teams yet")
        if winner_id is None:
            raise ValueError(f"Knockout match {match_id} is level: an advancing team is required")

    if is_knockout and match.is_completed:
        _withdraw_previous_result(located, match)

    match.team1_score = new_team1_score
    match.team2_score = new_team2_score
    match.status = new_status

    if not match.is_completed:
        return match

    if not is_knockout:
        match.winner_id = winner_id
        if winner_id:
            match.loser_id = match.team2_id if winner_id == match.team1_id else match.team1_id
        return match

    if score_winner is not None and advancing_team_id not in (None, score_winner):
        match.manual_winner_id = advancing_team_id
        match.is_manual_override = True

    _complete_knockout(located, match, winner_id)
    return match


def set_manual_winner(bracket: BracketData, match_id: str, team_id: str) -> Match:
    """Organizer override: ``team_id`` advances regardless of the score."""
    match = find_match(bracket, match_id)
    if match is None:
        raise KeyError(match_id)
    if team_id not in (match.team1_id, match.team2_id):
        raise ValueError(f"Team {team_id} does not play in match {match_id}")

    match = record_result(bracket, match_id, advancing_team_id=team_id, status=MatchStatus.COMPLETED)
    match.manual_winner_id = team_id
    match.is_manual_override = True
    return match
