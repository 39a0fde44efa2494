"""Random group draw, manual group edits and bracket lifecycle.

DrawService works on one SQLAlchemy session. Mutating operations check the
acting user first, run every validation before touching the database and
commit once at the end.
"""

import logging
import math
import uuid
from typing import Any, Optional

from ftdraw import bracket as brackets
from ftdraw.access import authorize
from ftdraw.config_loader import DEFAULT_CONFIG
from ftdraw.errors import NotFoundError, ValidationError
from ftdraw.models import (
    BracketData,
    BracketType,
    GroupStanding,
    Match,
    MatchStatus,
    TournamentStatus,
)
from ftdraw.seeding import deal_round_robin, group_letters, seeded_shuffle
from ftdraw.standings import calculate_group_standings
from ftdraw.storage import (
    BracketRepository,
    GroupORM,
    GroupRepository,
    RegistrationORM,
    RegistrationRepository,
    TournamentORM,
    TournamentRepository,
)

logger = logging.getLogger(__name__)

GROUP_FORMATS = (BracketType.GROUPS_ONLY, BracketType.GROUPS_PLUS_KNOCKOUT)
DRAWABLE_STATUSES = (TournamentStatus.PUBLISHED.value, TournamentStatus.ONGOING.value)


def team_details(registration: Optional[RegistrationORM], registration_id: str) -> dict[str, Any]:
    """Display data of a team inside a group."""
    return {
        "registration_id": registration_id,
        "club_name": registration.club_name if registration else None,
        "coach_name": registration.coach_name if registration else None,
    }


def group_to_dict(group: GroupORM, registrations: dict[str, RegistrationORM]) -> dict[str, Any]:
    """Serialize a group with the club/coach names of its teams."""
    return {
        "id": group.id,
        "tournament_id": group.tournament_id,
        "group_letter": group.group_letter,
        "group_order": group.group_order,
        "teams": group.teams,
        "team_details": [team_details(registrations.get(team_id), team_id) for team_id in group.teams],
    }


def tournament_to_dict(tournament: TournamentORM) -> dict[str, Any]:
    return {
        "id": tournament.id,
        "name": tournament.name,
        "organizer_id": tournament.organizer_id,
        "status": tournament.status,
        "draw_completed": tournament.draw_completed,
        "draw_seed": tournament.draw_seed,
    }


class DrawService:
    """Group draw and bracket operations for one database session."""

    def __init__(self, session, config: Optional[dict[str, Any]] = None):
        self.session = session
        self.config = config or DEFAULT_CONFIG
        self.tournaments = TournamentRepository(session)
        self.registrations = RegistrationRepository(session)
        self.groups = GroupRepository(session)
        self.bracket_store = BracketRepository(session)

    def _registrations_by_id(self, tournament_id: str) -> dict[str, RegistrationORM]:
        return {r.id: r for r in self.registrations.get_by_tournament(tournament_id)}

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def execute_draw(
        self,
        tournament_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        number_of_groups: Optional[int] = None,
        seed: Optional[str] = None,
    ) -> list[GroupORM]:
        """Random seeded draw of all approved teams into groups.

        Teams are shuffled with ``seed`` (a new UUID when omitted) and dealt
        A, B, C, A, B, C, ... The seed is stored on the tournament so the
        draw can be reproduced.

        Raises:
            NotFoundError: Unknown tournament
            ForbiddenError: User may not manage this tournament
            ValidationError: Draw done already, tournament not open, too few teams
                or bad group count
        """
        try:
            tournament = authorize(
                self.session,
                tournament_id,
                user_id,
                user_role,
                lock=True,
                action="execute the draw for this tournament",
            )

            if tournament.draw_completed:
                raise ValidationError("Draw has already been completed for this tournament")

            if tournament.status not in DRAWABLE_STATUSES:
                raise ValidationError("Can only execute draw for published or ongoing tournaments")

            registrations = self.registrations.get_approved(tournament_id)
            if len(registrations) < 2:
                raise ValidationError("At least 2 approved teams are required for the draw")

            group_size = self.config.get("default_group_size", 4)
            groups_count = (
                number_of_groups
                if number_of_groups is not None
                else math.ceil(len(registrations) / group_size)
            )
            if groups_count > len(registrations):
                raise ValidationError("Number of groups cannot exceed number of teams")
            if groups_count < 1 or groups_count > 26:
                raise ValidationError("Number of groups must be between 1 and 26")

            seed = seed or str(uuid.uuid4())
            shuffled = seeded_shuffle(registrations, seed)

            self.groups.delete_by_tournament(tournament_id)
            self.registrations.clear_group_assignments(tournament_id)

            saved = []
            dealt = deal_round_robin(shuffled, groups_count)
            for order, (letter, members) in enumerate(zip(group_letters(groups_count), dealt), start=1):
                saved.append(
                    self.groups.add(tournament_id, letter, [r.id for r in members], group_order=order)
                )
                for registration in members:
                    registration.group_assignment = letter

            self.tournaments.mark_draw(tournament, completed=True, seed=seed)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Draw for tournament %s: %d teams into %d groups (seed=%s)",
            tournament_id,
            len(registrations),
            groups_count,
            seed,
        )
        return saved

    def get_groups(self, tournament_id: str) -> list[dict[str, Any]]:
        """Groups in display order, with club and coach names of every team."""
        authorize(self.session, tournament_id)
        registrations = self._registrations_by_id(tournament_id)
        return [group_to_dict(g, registrations) for g in self.groups.get_by_tournament(tournament_id)]

    def get_bracket(self, tournament_id: str, age_group_id: Optional[str] = None) -> dict[str, Any]:
        """Groups of a tournament together with its draw state and stored bracket."""
        tournament = authorize(self.session, tournament_id)
        stored = self.bracket_store.get(tournament_id, age_group_id)
        return {
            "groups": self.get_groups(tournament_id),
            "tournament": tournament_to_dict(tournament),
            "draw_completed": tournament.draw_completed,
            "bracket": stored.data.to_dict() if stored else None,
        }

    def update_bracket(
        self,
        tournament_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        assignments: list[dict[str, str]],
    ) -> list[GroupORM]:
        """Move teams between groups by hand.

        Each assignment is ``{"registration_id": ..., "group_letter": ...}``.
        Groups are rebuilt afterwards from the letters of all approved
        registrations, in letter order.

        Raises:
            NotFoundError: Unknown tournament or registration
            ForbiddenError: User may not manage this tournament
        """
        authorize(
            self.session, tournament_id, user_id, user_role, action="update the bracket for this tournament"
        )

        changes = []
        for assignment in assignments:
            registration = self.registrations.get_in_tournament(tournament_id, assignment["registration_id"])
            if registration is None:
                raise NotFoundError(f"Registration {assignment['registration_id']} not found")
            letter = assignment["group_letter"]
            if not letter:
                raise ValidationError("Group letter must not be empty")
            changes.append((registration, letter))

        try:
            for registration, letter in changes:
                registration.group_assignment = letter

            approved = self.registrations.get_approved(tournament_id)
            letters = sorted({r.group_assignment for r in approved if r.group_assignment})

            self.groups.delete_by_tournament(tournament_id)
            saved = []
            for order, letter in enumerate(letters, start=1):
                teams = [r.id for r in approved if r.group_assignment == letter]
                saved.append(self.groups.add(tournament_id, letter, teams, group_order=order))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Groups of tournament %s edited (%d moves)", tournament_id, len(changes))
        return saved

    def reset_draw(self, tournament_id: str, user_id: Optional[str], user_role: Optional[str]) -> None:
        """Undo the draw: remove groups and group letters, clear the draw flag and seed."""
        tournament = authorize(
            self.session, tournament_id, user_id, user_role, action="reset the draw for this tournament"
        )

        try:
            self.groups.delete_by_tournament(tournament_id)
            self.registrations.clear_group_assignments(tournament_id)
            self.tournaments.mark_draw(tournament, completed=False, seed=None)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Draw of tournament %s reset", tournament_id)

    def create_group(
        self,
        tournament_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        group_letter: str,
        teams: Optional[list[str]] = None,
        group_order: int = 0,
    ) -> GroupORM:
        """Create a single group by hand.

        Raises:
            ValidationError: A group with this letter exists already
        """
        authorize(
            self.session, tournament_id, user_id, user_role, action="create groups for this tournament"
        )

        if self.groups.get_by_letter(tournament_id, group_letter):
            raise ValidationError(f"Group {group_letter} already exists")

        teams = teams or []
        for registration_id in teams:
            if self.registrations.get_in_tournament(tournament_id, registration_id) is None:
                raise NotFoundError(f"Registration {registration_id} not found")

        group = self.groups.add(tournament_id, group_letter, teams, group_order=group_order)
        self.session.commit()
        return group

    def update_group(
        self,
        tournament_id: str,
        group_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        teams: Optional[list[str]] = None,
        group_letter: Optional[str] = None,
    ) -> GroupORM:
        """Edit one group: its teams, its letter, or both.

        Registrations follow the group: its members get the group letter and
        teams taken out of it lose theirs.

        Raises:
            NotFoundError: Unknown group or registration
            ValidationError: Letter used by another group, team listed twice
        """
        authorize(
            self.session, tournament_id, user_id, user_role, action="update groups for this tournament"
        )

        group = self.groups.get_by_id(tournament_id, group_id)
        if group is None:
            raise NotFoundError("Group not found")

        if group_letter is not None and group_letter != group.group_letter:
            if not group_letter:
                raise ValidationError("Group letter must not be empty")
            if self.groups.get_by_letter(tournament_id, group_letter):
                raise ValidationError(f"Group {group_letter} already exists")

        members = []
        if teams is not None:
            if len(set(teams)) != len(teams):
                raise ValidationError("A team can only be listed once in a group")
            for registration_id in teams:
                registration = self.registrations.get_in_tournament(tournament_id, registration_id)
                if registration is None:
                    raise NotFoundError(f"Registration {registration_id} not found")
                members.append(registration)

        old_letter = group.group_letter
        letter = group_letter or old_letter
        if teams is None:
            teams = group.teams
            members = [self.registrations.get_in_tournament(tournament_id, t) for t in teams]

        try:
            for registration_id in group.teams:
                if registration_id in teams:
                    continue
                registration = self.registrations.get_in_tournament(tournament_id, registration_id)
                if registration is not None and registration.group_assignment == old_letter:
                    registration.group_assignment = None

            group.teams = teams
            group.group_letter = letter
            for registration in members:
                if registration is not None:
                    registration.group_assignment = letter
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Group %s of tournament %s updated (%d teams)", letter, tournament_id, len(group.teams))
        return group

    # ------------------------------------------------------------------
    # Brackets
    # ------------------------------------------------------------------

    def _load_bracket(self, tournament_id: str, age_group_id: Optional[str]) -> BracketData:
        stored = self.bracket_store.get(tournament_id, age_group_id)
        if stored is None:
            raise NotFoundError("Bracket not found")
        return stored.data

    def generate_bracket(
        self,
        tournament_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        bracket_type: Optional[BracketType] = None,
        age_group_id: Optional[str] = None,
        group_count: Optional[int] = None,
        advancing_per_group: Optional[int] = None,
        third_place_match: Optional[bool] = None,
        seed: Optional[str] = None,
        league_legs: Optional[int] = None,
    ) -> BracketData:
        """Generate and store the bracket of a tournament (or age group).

        Group formats use the drawn groups and get one round robin per group.
        Other formats place all approved teams in seeded-shuffle order. A
        previous bracket of the same tournament / age group is replaced.

        Raises:
            ValidationError: Too few teams, groups not drawn, bad options
        """
        tournament = authorize(
            self.session, tournament_id, user_id, user_role, action="manage brackets for this tournament"
        )

        drawn_groups = self.groups.get_by_tournament(tournament_id)
        if bracket_type is None:
            bracket_type = (
                BracketType.GROUPS_PLUS_KNOCKOUT
                if tournament.draw_completed and drawn_groups
                else BracketType.SINGLE_ELIMINATION
            )
        bracket_type = BracketType(bracket_type)

        advancing = advancing_per_group or self.config.get("advancing_per_group", 2)
        third_place = (
            self.config.get("third_place_match", False) if third_place_match is None else third_place_match
        )
        legs = league_legs or self.config.get("league_legs", 2)
        seed = seed or tournament.draw_seed or brackets.generate_seed()

        try:
            if bracket_type in GROUP_FORMATS:
                if not drawn_groups:
                    raise ValidationError("Groups must be drawn before generating a group bracket")
                if group_count and group_count != len(drawn_groups):
                    raise ValidationError(
                        f"Tournament has {len(drawn_groups)} drawn groups, not {group_count}"
                    )
                team_count = sum(len(g.teams) for g in drawn_groups)
                data = brackets.generate_bracket(
                    bracket_type,
                    team_count,
                    group_count=len(drawn_groups),
                    advancing_per_group=advancing,
                    third_place_match=third_place,
                    seed=seed,
                )
                data.group_matches = {
                    g.group_letter: brackets.group_fixtures(g.group_letter, g.teams) for g in drawn_groups
                }
            else:
                team_ids = [r.id for r in self.registrations.get_approved(tournament_id)]
                if len(team_ids) < 2:
                    raise ValidationError("At least 2 approved teams are required for a bracket")
                data = brackets.generate_bracket(
                    bracket_type,
                    len(team_ids),
                    group_count=group_count,
                    third_place_match=third_place,
                    seed=seed,
                    league_legs=legs,
                )
                brackets.place_teams(data, seeded_shuffle(team_ids, seed))
        except ValueError as e:
            raise ValidationError(str(e))

        self.bracket_store.save(tournament_id, data, age_group_id)
        logger.info("Generated %s for tournament %s", data, tournament_id)
        return data

    def get_matches(self, tournament_id: str, age_group_id: Optional[str] = None) -> list[Match]:
        """Every match of the stored bracket: playoff, fixtures and group fixtures."""
        authorize(self.session, tournament_id)
        return list(brackets.iter_matches(self._load_bracket(tournament_id, age_group_id)))

    def _apply_to_match(self, tournament_id: str, age_group_id: Optional[str], match_id: str, apply) -> Match:
        data = self._load_bracket(tournament_id, age_group_id)
        if brackets.find_match(data, match_id) is None:
            raise NotFoundError(f"Match {match_id} not found")
        try:
            match = apply(data)
        except ValueError as e:
            raise ValidationError(str(e))
        self.bracket_store.save(tournament_id, data, age_group_id)
        return match

    def update_match_score(
        self,
        tournament_id: str,
        match_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        team1_score: Optional[int] = None,
        team2_score: Optional[int] = None,
        advancing_team_id: Optional[str] = None,
        status: Optional[MatchStatus] = None,
        age_group_id: Optional[str] = None,
    ) -> Match:
        """Enter a match result; knockout winners move on to their next match.

        Raises:
            NotFoundError: Unknown tournament, bracket or match
            ValidationError: Negative score, level knockout score without an
                advancing team, or the follow-up match was already played
        """
        authorize(
            self.session, tournament_id, user_id, user_role, action="manage matches for this tournament"
        )
        for score in (team1_score, team2_score):
            if score is not None and score < 0:
                raise ValidationError("Scores cannot be negative")

        match = self._apply_to_match(
            tournament_id,
            age_group_id,
            match_id,
            lambda data: brackets.record_result(
                data, match_id, team1_score, team2_score, advancing_team_id=advancing_team_id, status=status
            ),
        )
        logger.info("Result for %s in tournament %s: %s", match_id, tournament_id, match)
        return match

    def set_match_advancement(
        self,
        tournament_id: str,
        match_id: str,
        team_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        age_group_id: Optional[str] = None,
    ) -> Match:
        """Organizer decision: ``team_id`` advances from the match."""
        authorize(
            self.session, tournament_id, user_id, user_role, action="manage matches for this tournament"
        )
        match = self._apply_to_match(
            tournament_id,
            age_group_id,
            match_id,
            lambda data: brackets.set_manual_winner(data, match_id, team_id),
        )
        logger.info("Manual advancement in %s: %s goes through", match_id, team_id)
        return match

    def get_standings(
        self, tournament_id: str, age_group_id: Optional[str] = None
    ) -> dict[str, list[GroupStanding]]:
        """Tables of every drawn group, keyed by group letter in group order."""
        authorize(self.session, tournament_id)

        stored = self.bracket_store.get(tournament_id, age_group_id)
        group_matches = stored.data.group_matches if stored else {}

        return {
            group.group_letter: calculate_group_standings(group.teams, group_matches.get(group.group_letter, []))
            for group in self.groups.get_by_tournament(tournament_id)
        }

    def advance_to_knockout(
        self,
        tournament_id: str,
        user_id: Optional[str],
        user_role: Optional[str],
        age_group_id: Optional[str] = None,
    ) -> BracketData:
        """Seed the group qualifiers into the knockout stage.

        Every group fixture has to be completed and no knockout match may
        have been played yet. The knockout rounds are rebuilt empty before
        seeding so this can be repeated after a corrected group result.
        """
        authorize(
            self.session, tournament_id, user_id, user_role, action="manage brackets for this tournament"
        )
        data = self._load_bracket(tournament_id, age_group_id)

        if data.type != BracketType.GROUPS_PLUS_KNOCKOUT:
            raise ValidationError("Only a groups plus knockout bracket has a knockout stage to seed")

        pending = sum(1 for fixtures in data.group_matches.values() for m in fixtures if not m.is_completed)
        if pending:
            raise ValidationError(f"Group stage not finished: {pending} matches pending")

        played = [
            m
            for playoff_round in data.playoff_rounds
            for m in playoff_round.matches
            if m.is_completed and not m.auto_advance
        ]
        if played:
            raise ValidationError("Knockout stage has already started")

        advancing = data.advancing_teams_per_group or 2
        standings = self.get_standings(tournament_id, age_group_id)
        # Groups smaller than the advancing count leave BYEs in the draw
        qualifier_count = sum(min(advancing, len(rows)) for rows in standings.values())

        try:
            knockout = brackets.generate_single_elimination(
                qualifier_count, data.third_place_match, data.seed
            )
            data.playoff_rounds = knockout.playoff_rounds
            brackets.seed_teams_into_bracket(standings, advancing, data)
            brackets.resolve_byes(data)
        except ValueError as e:
            raise ValidationError(str(e))

        self.bracket_store.save(tournament_id, data, age_group_id)
        logger.info("Knockout stage of tournament %s seeded from %d groups", tournament_id, len(standings))
        return data
