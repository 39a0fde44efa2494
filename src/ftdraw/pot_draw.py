"""Pot-based group draw.

Organizers put every approved team into one of four pots (1 = strongest).
The draw shuffles each pot with a seed derived from the tournament id and
pot number, then deals the pots into groups so every group gets a balanced
mix of pots. Redrawing the same pots gives the same groups.
"""

import logging
from typing import Any, Optional

from ftdraw.access import authorize
from ftdraw.errors import NotFoundError, ValidationError
from ftdraw.models import PotValidation, RegistrationStatus
from ftdraw.seeding import (
    POT_NUMBERS,
    distribute_pots_snake,
    distribute_pots_strict,
    group_letters,
    seeded_shuffle,
)
from ftdraw.storage import (
    GroupORM,
    GroupRepository,
    PotRepository,
    RegistrationRepository,
    TournamentPotORM,
    TournamentRepository,
)

logger = logging.getLogger(__name__)

MANAGE_POTS = "manage pots for this tournament"


class PotDrawService:
    """Pot assignment and pot-based draw for one database session."""

    def __init__(self, session, strict_pots: bool = False):
        """Create the service.

        Args:
            session: SQLAlchemy session
            strict_pots: Require every pot to hold exactly one team per group
                and fill groups pot by pot instead of the snake draft
        """
        self.session = session
        self.strict_pots = strict_pots
        self.tournaments = TournamentRepository(session)
        self.registrations = RegistrationRepository(session)
        self.groups = GroupRepository(session)
        self.pots = PotRepository(session)

    # ------------------------------------------------------------------
    # Pot assignment
    # ------------------------------------------------------------------

    def _assign(self, tournament_id: str, registration_id: str, pot_number: int) -> TournamentPotORM:
        registration = self.registrations.get_in_tournament(tournament_id, registration_id)
        if registration is None:
            raise NotFoundError("Registration not found in this tournament")

        if registration.status != RegistrationStatus.APPROVED.value:
            raise ValidationError("Only approved registrations can be assigned to pots")

        if pot_number not in POT_NUMBERS:
            raise ValidationError(f"Pot number must be between 1 and 4, got {pot_number}")

        pot = self.pots.upsert(tournament_id, registration_id, pot_number)
        logger.info("Registration %s assigned to pot %d", registration_id, pot_number)
        return pot

    def assign_team_to_pot(
        self,
        tournament_id: str,
        registration_id: str,
        pot_number: int,
        user_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> TournamentPotORM:
        """Put an approved registration into a pot, or move it to another pot.

        Raises:
            NotFoundError: Unknown tournament or registration
            ForbiddenError: User may not manage this tournament
            ValidationError: Registration not approved, or pot outside 1-4
        """
        authorize(self.session, tournament_id, user_id, user_role, action=MANAGE_POTS)
        return self._assign(tournament_id, registration_id, pot_number)

    def assign_teams_to_pots_bulk(
        self,
        tournament_id: str,
        assignments: list[dict[str, Any]],
        user_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> list[TournamentPotORM]:
        """Apply several pot assignments in order.

        Every assignment commits on its own: when one fails, the ones before
        it stay applied and the error is raised.

        Args:
            assignments: Dicts with ``registration_id`` and ``pot_number``
        """
        authorize(self.session, tournament_id, user_id, user_role, action=MANAGE_POTS)

        results = []
        for assignment in assignments:
            results.append(
                self._assign(tournament_id, assignment["registration_id"], assignment["pot_number"])
            )
        return results

    def get_pot_assignments(self, tournament_id: str) -> dict[int, list[TournamentPotORM]]:
        """Get assignments keyed by pot number, all four pots always present."""
        authorize(self.session, tournament_id)

        result: dict[int, list[TournamentPotORM]] = {pot: [] for pot in POT_NUMBERS}
        for pot in self.pots.get_by_tournament(tournament_id):
            result.setdefault(pot.pot_number, []).append(pot)
        return result

    def validate_pot_distribution(
        self, tournament_id: str, expected_per_pot: Optional[int] = None
    ) -> PotValidation:
        """Check pot sizes.

        With ``expected_per_pot`` every non-empty pot must hold exactly that
        many teams. Without it the distribution is always valid and the
        message reports the number of assigned teams.
        """
        pots = self.get_pot_assignments(tournament_id)
        pot_counts = {pot: len(teams) for pot, teams in pots.items()}
        total = sum(pot_counts.values())

        if expected_per_pot:
            for count in pot_counts.values():
                if count != expected_per_pot and count != 0:
                    return PotValidation(
                        valid=False,
                        message=f"Uneven pot distribution. Expected {expected_per_pot} per pot, got {count}",
                        pot_counts=pot_counts,
                    )

        return PotValidation(valid=True, message=f"Total teams assigned: {total}", pot_counts=pot_counts)

    def clear_pot_assignments(
        self, tournament_id: str, user_id: Optional[str] = None, user_role: Optional[str] = None
    ) -> int:
        """Delete every pot assignment of a tournament.

        Returns:
            Number of assignments deleted
        """
        authorize(self.session, tournament_id, user_id, user_role, action=MANAGE_POTS)
        count = self.pots.delete_by_tournament(tournament_id)
        logger.info("Cleared %d pot assignments of tournament %s", count, tournament_id)
        return count

    # ------------------------------------------------------------------
    # Draw
    # ------------------------------------------------------------------

    def execute_pot_based_draw(
        self,
        tournament_id: str,
        number_of_groups: int,
        user_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> list[GroupORM]:
        """Draw the groups of a tournament from its pots.

        The tournament row stays locked from the "already drawn" check until
        the groups and the completion flag are committed together.

        Args:
            tournament_id: Tournament ID
            number_of_groups: Groups to create (2 .. number of approved teams)

        Returns:
            Saved groups in letter order

        Raises:
            NotFoundError: Unknown tournament
            ForbiddenError: User may not manage this tournament
            ValidationError: Draw done already, bad group count, or teams missing from pots
        """
        try:
            tournament = authorize(
                self.session, tournament_id, user_id, user_role, lock=True, action=MANAGE_POTS
            )
            if tournament.draw_completed:
                raise ValidationError("Draw has already been completed for this tournament")

            approved = {r.id: r for r in self.registrations.get_approved(tournament_id)}
            total_teams = len(approved)
            if total_teams == 0:
                raise ValidationError("No teams registered for this tournament")

            max_groups = min(total_teams, 26)
            if number_of_groups < 2 or number_of_groups > max_groups:
                raise ValidationError(f"Number of groups must be between 2 and {max_groups}")

            if self.strict_pots and total_teams % number_of_groups != 0:
                raise ValidationError(
                    f"Number of teams ({total_teams}) must be divisible by number of groups ({number_of_groups})"
                )

            # Teams withdrawn or rejected after potting are not drawn
            pots: dict[int, list[str]] = {pot: [] for pot in POT_NUMBERS}
            for pot in self.pots.get_by_tournament(tournament_id):
                if pot.registration_id in approved:
                    pots[pot.pot_number].append(pot.registration_id)

            assigned = sum(len(members) for members in pots.values())
            if assigned != total_teams:
                raise ValidationError(
                    f"Not all teams assigned to pots. Assigned: {assigned}, Total: {total_teams}"
                )

            shuffled = {
                pot: seeded_shuffle(members, f"{tournament_id}{pot}")
                for pot, members in pots.items()
                if members
            }

            try:
                if self.strict_pots:
                    distributed = distribute_pots_strict(shuffled, number_of_groups)
                else:
                    distributed = distribute_pots_snake(shuffled, number_of_groups)
            except ValueError as e:
                raise ValidationError(str(e))

            self.groups.delete_by_tournament(tournament_id)
            self.registrations.clear_group_assignments(tournament_id)

            saved = []
            for order, (letter, teams) in enumerate(zip(group_letters(number_of_groups), distributed), start=1):
                saved.append(self.groups.add(tournament_id, letter, teams, group_order=order))
                for registration_id in teams:
                    approved[registration_id].group_assignment = letter

            self.tournaments.mark_draw(tournament, completed=True, seed=tournament.draw_seed)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "Pot draw for tournament %s: %d teams into %d groups", tournament_id, total_teams, number_of_groups
        )
        return saved
