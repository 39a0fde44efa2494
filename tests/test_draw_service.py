"""Tests for the random draw, group edits and the bracket lifecycle."""

import pytest

from conftest import ORGANIZER, OTHER_USER, create_tournament
from ftdraw.draw_service import DrawService
from ftdraw.errors import ForbiddenError, NotFoundError, ValidationError
from ftdraw.models import BYE, BracketType, MatchStatus, TournamentStatus
from ftdraw.storage import GroupRepository, RegistrationRepository


def drawn_tournament(session, team_count=8, groups=2, seed="fixed-seed"):
    tournament, registrations = create_tournament(session, team_count)
    service = DrawService(session)
    service.execute_draw(tournament.id, ORGANIZER, None, number_of_groups=groups, seed=seed)
    return service, tournament, registrations


def play_group_stage(service, tournament_id):
    """Every group fixture ends 1-0 for the home side."""
    for match in service.get_matches(tournament_id):
        if match.group_letter:
            service.update_match_score(tournament_id, match.id, ORGANIZER, None, team1_score=1, team2_score=0)


# ============================================================================
# Random draw
# ============================================================================


def test_draw_defaults_to_groups_of_four(session, tournament_16):
    tournament, registrations = tournament_16
    groups = DrawService(session).execute_draw(tournament.id, ORGANIZER, None)

    assert [g.group_letter for g in groups] == ["A", "B", "C", "D"]
    assert all(len(g.teams) == 4 for g in groups)
    assert sorted(t for g in groups for t in g.teams) == sorted(r.id for r in registrations)

    session.refresh(tournament)
    assert tournament.draw_completed
    assert tournament.draw_seed


def test_same_seed_gives_same_draw(session):
    service, tournament, _ = drawn_tournament(session, 10, groups=3, seed="abc")
    first = {g.group_letter: g.teams for g in GroupRepository(session).get_by_tournament(tournament.id)}

    service.reset_draw(tournament.id, ORGANIZER, None)
    session.refresh(tournament)
    assert not tournament.draw_completed
    assert tournament.draw_seed is None

    service.execute_draw(tournament.id, ORGANIZER, None, number_of_groups=3, seed="abc")
    second = {g.group_letter: g.teams for g in GroupRepository(session).get_by_tournament(tournament.id)}

    assert first == second
    assert [len(first[letter]) for letter in "ABC"] == [4, 3, 3]


def test_draw_only_once(session):
    service, tournament, _ = drawn_tournament(session)
    with pytest.raises(ValidationError, match="already been completed"):
        service.execute_draw(tournament.id, ORGANIZER, None)


def test_draw_needs_open_tournament(session):
    tournament, _ = create_tournament(session, 8, status=TournamentStatus.DRAFT.value)
    with pytest.raises(ValidationError, match="published or ongoing"):
        DrawService(session).execute_draw(tournament.id, ORGANIZER, None)


def test_draw_needs_two_teams(session):
    tournament, _ = create_tournament(session, 1)
    with pytest.raises(ValidationError, match="At least 2 approved teams"):
        DrawService(session).execute_draw(tournament.id, ORGANIZER, None)


def test_draw_group_count_limits(session):
    tournament, _ = create_tournament(session, 3)
    with pytest.raises(ValidationError, match="cannot exceed number of teams"):
        DrawService(session).execute_draw(tournament.id, ORGANIZER, None, number_of_groups=4)

    tournament, _ = create_tournament(session, 30)
    with pytest.raises(ValidationError, match="between 1 and 26"):
        DrawService(session).execute_draw(tournament.id, ORGANIZER, None, number_of_groups=27)


def test_draw_permissions(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)

    with pytest.raises(ForbiddenError, match="execute the draw"):
        service.execute_draw(tournament.id, OTHER_USER, "PARTICIPANT")
    with pytest.raises(NotFoundError):
        service.execute_draw("missing", OTHER_USER, "PARTICIPANT")

    assert len(service.execute_draw(tournament.id, OTHER_USER, "ADMIN")) == 1


def test_get_groups_includes_team_details(session):
    service, tournament, registrations = drawn_tournament(session, 4, groups=2)
    names = {r.id: r.club_name for r in registrations}

    groups = service.get_groups(tournament.id)

    assert [g["group_letter"] for g in groups] == ["A", "B"]
    for group in groups:
        assert [d["registration_id"] for d in group["team_details"]] == group["teams"]
        assert all(d["club_name"] == names[d["registration_id"]] for d in group["team_details"])


def test_get_bracket_before_generation(session):
    service, tournament, _ = drawn_tournament(session, 4, groups=2)

    result = service.get_bracket(tournament.id)

    assert result["draw_completed"] is True
    assert result["tournament"]["id"] == tournament.id
    assert len(result["groups"]) == 2
    assert result["bracket"] is None


# ============================================================================
# Manual group edits
# ============================================================================


def test_update_bracket_moves_team(session):
    service, tournament, registrations = drawn_tournament(session, 4, groups=2)
    groups = {g.group_letter: g.teams for g in GroupRepository(session).get_by_tournament(tournament.id)}
    moved = groups["A"][0]

    updated = service.update_bracket(
        tournament.id, ORGANIZER, None, [{"registration_id": moved, "group_letter": "B"}]
    )

    by_letter = {g.group_letter: g.teams for g in updated}
    assert moved in by_letter["B"]
    assert moved not in by_letter["A"]
    assert len(by_letter["B"]) == 3


def test_update_bracket_unknown_registration_changes_nothing(session):
    service, tournament, registrations = drawn_tournament(session, 4, groups=2)
    before = {g.group_letter: g.teams for g in GroupRepository(session).get_by_tournament(tournament.id)}

    with pytest.raises(NotFoundError, match="Registration nope not found"):
        service.update_bracket(
            tournament.id,
            ORGANIZER,
            None,
            [
                {"registration_id": registrations[0].id, "group_letter": "C"},
                {"registration_id": "nope", "group_letter": "A"},
            ],
        )

    after = {g.group_letter: g.teams for g in GroupRepository(session).get_by_tournament(tournament.id)}
    assert after == before


def test_create_group(session):
    tournament, registrations = create_tournament(session, 2)
    service = DrawService(session)

    group = service.create_group(tournament.id, ORGANIZER, None, "A", [registrations[0].id])
    assert group.teams == [registrations[0].id]

    with pytest.raises(ValidationError, match="Group A already exists"):
        service.create_group(tournament.id, ORGANIZER, None, "A")
    with pytest.raises(NotFoundError):
        service.create_group(tournament.id, ORGANIZER, None, "B", ["nope"])


def test_update_group_replaces_teams_and_letters(session):
    service, tournament, registrations = drawn_tournament(session, 4, groups=2)
    groups = {g.group_letter: g for g in GroupRepository(session).get_by_tournament(tournament.id)}
    removed, kept = groups["A"].teams
    newcomer = groups["B"].teams[0]

    group = service.update_group(tournament.id, groups["A"].id, ORGANIZER, None, teams=[kept, newcomer])

    assert group.teams == [kept, newcomer]
    by_id = {r.id: r for r in registrations}
    for registration in registrations:
        session.refresh(registration)
    assert by_id[removed].group_assignment is None
    assert by_id[newcomer].group_assignment == "A"


def test_update_group_renames_letter(session):
    service, tournament, registrations = drawn_tournament(session, 4, groups=2)
    group_a = GroupRepository(session).get_by_letter(tournament.id, "A")

    group = service.update_group(tournament.id, group_a.id, ORGANIZER, None, group_letter="E")

    assert group.group_letter == "E"
    for registration_id in group.teams:
        assert RegistrationRepository(session).get_by_id(registration_id).group_assignment == "E"


def test_update_group_errors(session):
    service, tournament, _ = drawn_tournament(session, 4, groups=2)
    group_a = GroupRepository(session).get_by_letter(tournament.id, "A")
    before = group_a.teams

    with pytest.raises(NotFoundError, match="Group not found"):
        service.update_group(tournament.id, "missing", ORGANIZER, None, teams=[])
    with pytest.raises(ValidationError, match="Group B already exists"):
        service.update_group(tournament.id, group_a.id, ORGANIZER, None, group_letter="B")
    with pytest.raises(NotFoundError, match="Registration nope not found"):
        service.update_group(tournament.id, group_a.id, ORGANIZER, None, teams=[before[0], "nope"])
    with pytest.raises(ValidationError, match="only be listed once"):
        service.update_group(tournament.id, group_a.id, ORGANIZER, None, teams=[before[0], before[0]])
    with pytest.raises(ForbiddenError):
        service.update_group(tournament.id, group_a.id, OTHER_USER, None, teams=[])

    assert GroupRepository(session).get_by_id(tournament.id, group_a.id).teams == before


def test_group_of_other_tournament_is_not_found(session):
    service, tournament, _ = drawn_tournament(session, 4, groups=2)
    other, _ = create_tournament(session, 2)
    group_a = GroupRepository(session).get_by_letter(tournament.id, "A")

    with pytest.raises(NotFoundError, match="Group not found"):
        service.update_group(other.id, group_a.id, ORGANIZER, None, teams=[])


# ============================================================================
# Brackets
# ============================================================================


def test_generate_defaults_to_single_elimination_without_draw(session):
    tournament, registrations = create_tournament(session, 6)
    service = DrawService(session)

    bracket = service.generate_bracket(tournament.id, ORGANIZER, None, seed="s1")

    assert bracket.type == BracketType.SINGLE_ELIMINATION
    assert bracket.seed == "s1"
    placed = {
        team
        for m in bracket.playoff_rounds[0].matches
        for team in (m.team1_id, m.team2_id)
        if team and team != BYE
    }
    assert placed == {r.id for r in registrations}

    stored = service.get_bracket(tournament.id)["bracket"]
    assert stored["type"] == "SINGLE_ELIMINATION"


def test_generate_defaults_to_groups_plus_knockout_after_draw(session):
    service, tournament, _ = drawn_tournament(session, 8, groups=2)

    bracket = service.generate_bracket(tournament.id, ORGANIZER, None)

    assert bracket.type == BracketType.GROUPS_PLUS_KNOCKOUT
    assert bracket.seed == "fixed-seed"
    assert sorted(bracket.group_matches) == ["A", "B"]
    assert all(len(fixtures) == 6 for fixtures in bracket.group_matches.values())
    assert len(bracket.playoff_rounds[0].matches) == 2


def test_group_format_needs_draw(session):
    tournament, _ = create_tournament(session, 8)
    with pytest.raises(ValidationError, match="Groups must be drawn"):
        DrawService(session).generate_bracket(tournament.id, ORGANIZER, None, BracketType.GROUPS_ONLY)


def test_bracket_needs_two_teams(session):
    tournament, _ = create_tournament(session, 1)
    with pytest.raises(ValidationError, match="At least 2 approved teams"):
        DrawService(session).generate_bracket(tournament.id, ORGANIZER, None, BracketType.LEAGUE)


def test_league_fixtures_are_filled(session):
    tournament, registrations = create_tournament(session, 4)
    service = DrawService(session)

    bracket = service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.LEAGUE, league_legs=2)

    assert len(bracket.matches) == 12
    ids = {r.id for r in registrations}
    assert all(m.team1_id in ids and m.team2_id in ids for m in bracket.matches)


def test_age_groups_have_their_own_bracket(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)

    service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.ROUND_ROBIN, age_group_id="u12")

    assert service.get_bracket(tournament.id)["bracket"] is None
    assert service.get_bracket(tournament.id, "u12")["bracket"]["type"] == "ROUND_ROBIN"
    with pytest.raises(NotFoundError, match="Bracket not found"):
        service.get_matches(tournament.id)
    assert len(service.get_matches(tournament.id, "u12")) == 6


def test_score_updates_advance_knockout_winner(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)
    bracket = service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.SINGLE_ELIMINATION)
    first = bracket.playoff_rounds[0].matches[0]

    match = service.update_match_score(tournament.id, first.id, ORGANIZER, None, team1_score=2, team2_score=0)

    assert match.status == MatchStatus.COMPLETED
    assert match.winner_id == first.team1_id
    final = [m for m in service.get_matches(tournament.id) if m.id == first.next_match_id][0]
    assert first.team1_id in (final.team1_id, final.team2_id)


def test_score_validation(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)
    bracket = service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.SINGLE_ELIMINATION)
    first = bracket.playoff_rounds[0].matches[0]

    with pytest.raises(ValidationError, match="Scores cannot be negative"):
        service.update_match_score(tournament.id, first.id, ORGANIZER, None, team1_score=-1, team2_score=0)
    with pytest.raises(NotFoundError, match="Match match_42 not found"):
        service.update_match_score(tournament.id, "match_42", ORGANIZER, None, team1_score=1, team2_score=0)
    with pytest.raises(ValidationError, match="advancing team is required"):
        service.update_match_score(tournament.id, first.id, ORGANIZER, None, team1_score=1, team2_score=1)
    with pytest.raises(ForbiddenError):
        service.update_match_score(tournament.id, first.id, OTHER_USER, None, team1_score=1, team2_score=0)

    stored = [m for m in service.get_matches(tournament.id) if m.id == first.id][0]
    assert stored.status == MatchStatus.PENDING


def test_manual_advancement(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)
    bracket = service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.SINGLE_ELIMINATION)
    first = bracket.playoff_rounds[0].matches[0]

    match = service.set_match_advancement(tournament.id, first.id, first.team2_id, ORGANIZER, None)

    assert match.winner_id == first.team2_id
    assert match.is_manual_override
    with pytest.raises(ValidationError):
        service.set_match_advancement(tournament.id, first.id, "not-playing", ORGANIZER, None)


def test_standings_follow_group_results(session):
    service, tournament, _ = drawn_tournament(session, 8, groups=2)
    service.generate_bracket(tournament.id, ORGANIZER, None)

    standings = service.get_standings(tournament.id)
    assert list(standings) == ["A", "B"]
    assert all(s.played == 0 for rows in standings.values() for s in rows)

    play_group_stage(service, tournament.id)

    standings = service.get_standings(tournament.id)
    for rows in standings.values():
        assert [s.position for s in rows] == [1, 2, 3, 4]
        assert all(s.played == 3 for s in rows)
        assert sum(s.points for s in rows) == 18


def test_advance_to_knockout_crosses_groups(session):
    service, tournament, _ = drawn_tournament(session, 8, groups=2)
    service.generate_bracket(tournament.id, ORGANIZER, None)
    play_group_stage(service, tournament.id)
    standings = service.get_standings(tournament.id)
    first_a, second_a = (s.team_id for s in standings["A"][:2])
    first_b, second_b = (s.team_id for s in standings["B"][:2])

    bracket = service.advance_to_knockout(tournament.id, ORGANIZER, None)

    semis = bracket.playoff_rounds[0].matches
    assert (semis[0].team1_id, semis[0].team2_id) == (first_a, second_b)
    assert (semis[1].team1_id, semis[1].team2_id) == (second_a, first_b)


def test_advance_to_knockout_needs_finished_groups(session):
    service, tournament, _ = drawn_tournament(session, 8, groups=2)
    service.generate_bracket(tournament.id, ORGANIZER, None)

    with pytest.raises(ValidationError, match="12 matches pending"):
        service.advance_to_knockout(tournament.id, ORGANIZER, None)


def test_advance_to_knockout_only_once_play_started(session):
    service, tournament, _ = drawn_tournament(session, 8, groups=2)
    service.generate_bracket(tournament.id, ORGANIZER, None)
    play_group_stage(service, tournament.id)
    bracket = service.advance_to_knockout(tournament.id, ORGANIZER, None)

    semi = bracket.playoff_rounds[0].matches[0]
    service.update_match_score(tournament.id, semi.id, ORGANIZER, None, team1_score=1, team2_score=0)

    with pytest.raises(ValidationError, match="already started"):
        service.advance_to_knockout(tournament.id, ORGANIZER, None)


def test_advance_to_knockout_needs_group_format(session):
    tournament, _ = create_tournament(session, 4)
    service = DrawService(session)
    service.generate_bracket(tournament.id, ORGANIZER, None, BracketType.SINGLE_ELIMINATION)

    with pytest.raises(ValidationError, match="groups plus knockout"):
        service.advance_to_knockout(tournament.id, ORGANIZER, None)


def test_group_smaller_than_advancing_count_leaves_a_bye(session):
    # 7 teams in 4 groups: sizes 2/2/2/1, so only 7 qualifiers
    service, tournament, _ = drawn_tournament(session, 7, groups=4)
    service.generate_bracket(tournament.id, ORGANIZER, None)
    play_group_stage(service, tournament.id)

    bracket = service.advance_to_knockout(tournament.id, ORGANIZER, None)

    first_round = bracket.playoff_rounds[0].matches
    assert len(first_round) == 4
    assert sum(1 for m in first_round if m.is_bye) == 1
    assert all(m.is_bye or (m.team1_id and m.team2_id) for m in first_round)

    final_id = bracket.playoff_rounds[-1].matches[0].id
    while True:
        playable = [
            m
            for m in service.get_matches(tournament.id)
            if not m.group_letter and not m.is_completed and m.team1_id and m.team2_id
        ]
        if not playable:
            break
        service.update_match_score(tournament.id, playable[0].id, ORGANIZER, None, team1_score=1, team2_score=0)

    final = [m for m in service.get_matches(tournament.id) if m.id == final_id][0]
    assert final.is_completed
    assert final.winner_id


def test_explicit_zero_groups_is_rejected(session):
    tournament, _ = create_tournament(session, 8)
    with pytest.raises(ValidationError, match="between 1 and 26"):
        DrawService(session).execute_draw(tournament.id, ORGANIZER, None, number_of_groups=0)
