"""Group standings calculator."""

from ftdraw.models import GroupStanding, Match

POINTS_WIN = 3
POINTS_DRAW = 1
POINTS_LOSS = 0


def calculate_group_standings(team_ids: list[str], matches: list[Match]) -> list[GroupStanding]:
    """Calculate the table of a group from its match results.

    Scoring:
    - Win: 3 points
    - Draw: 1 point
    - Loss: 0 points

    Only COMPLETED matches between two teams of the group count. Ties are
    broken by goal difference, then goals scored; teams still level keep
    the order of ``team_ids``.

    Args:
        team_ids: Teams of the group, in group order
        matches: Matches to consider (others are ignored)

    Returns:
        List of GroupStanding objects sorted by position (1 = best)
    """
    standings = {team_id: GroupStanding(team_id=team_id) for team_id in team_ids}

    for match in matches:
        if not match.is_completed:
            continue
        if match.team1_id not in standings or match.team2_id not in standings:
            continue
        if match.team1_score is None or match.team2_score is None:
            continue

        home = standings[match.team1_id]
        away = standings[match.team2_id]

        home.played += 1
        away.played += 1
        home.goals_for += match.team1_score
        home.goals_against += match.team2_score
        away.goals_for += match.team2_score
        away.goals_against += match.team1_score

        if match.team1_score > match.team2_score:
            home.won += 1
            home.points += POINTS_WIN
            away.lost += 1
            away.points += POINTS_LOSS
        elif match.team1_score < match.team2_score:
            away.won += 1
            away.points += POINTS_WIN
            home.lost += 1
            home.points += POINTS_LOSS
        else:
            home.drawn += 1
            away.drawn += 1
            home.points += POINTS_DRAW
            away.points += POINTS_DRAW

    for standing in standings.values():
        standing.goal_difference = standing.goals_for - standing.goals_against

    # sorted() is stable: equal rows keep group order
    ordered = sorted(
        standings.values(),
        key=lambda s: (s.points, s.goal_difference, s.goals_for),
        reverse=True,
    )

    for position, standing in enumerate(ordered, start=1):
        standing.position = position

    return ordered


def qualifiers(standings: list[GroupStanding], advancing: int) -> list[GroupStanding]:
    """Return the teams that advance from a sorted group table."""
    return standings[:advancing]
