"""Tournament access guard shared by the draw services."""

import logging
from typing import Optional

from ftdraw.errors import ForbiddenError, NotFoundError
from ftdraw.models import UserRole
from ftdraw.storage import TournamentORM, TournamentRepository

logger = logging.getLogger(__name__)


def authorize(
    session,
    tournament_id: str,
    user_id: Optional[str] = None,
    user_role: Optional[str] = None,
    lock: bool = False,
    action: str = "manage this tournament",
) -> TournamentORM:
    """Load a tournament and check the acting user may modify it.

    A missing tournament is reported before the user is checked. Without a
    user (read-only calls) only existence is checked.

    Args:
        session: SQLAlchemy session
        tournament_id: Tournament ID
        user_id: Acting user ID, None for read-only access
        user_role: Acting user role (ADMIN bypasses the organizer check)
        lock: Lock the tournament row until the current transaction ends
        action: Wording used in the forbidden message

    Returns:
        TournamentORM instance

    Raises:
        NotFoundError: Tournament does not exist
        ForbiddenError: User is neither the organizer nor an admin
    """
    tournament = TournamentRepository(session).get_by_id(tournament_id, lock=lock)
    if tournament is None:
        raise NotFoundError("Tournament not found")

    if user_id is None and user_role is None:
        return tournament

    is_admin = (user_role or "").upper() == UserRole.ADMIN.value
    if tournament.organizer_id != user_id and not is_admin:
        logger.warning("User %s denied on tournament %s", user_id, tournament_id)
        raise ForbiddenError(f"You are not allowed to {action}")

    return tournament
