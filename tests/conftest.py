"""Shared fixtures: in-memory database and a tournament with teams."""

import pytest

from ftdraw.models import RegistrationStatus, TournamentStatus
from ftdraw.storage import DatabaseManager, RegistrationRepository, TournamentRepository

ORGANIZER = "organizer-1"
OTHER_USER = "someone-else"


@pytest.fixture
def db():
    """Fresh in-memory database with all tables."""
    db_manager = DatabaseManager("sqlite:///:memory:")
    db_manager.create_tables()
    yield db_manager
    db_manager.engine.dispose()


@pytest.fixture
def session(db):
    session = db.get_session()
    yield session
    session.close()


def create_tournament(
    session,
    team_count: int,
    status: str = TournamentStatus.PUBLISHED.value,
    registration_status: str = RegistrationStatus.APPROVED.value,
):
    """Create a tournament owned by ORGANIZER with ``team_count`` registrations.

    Returns:
        (tournament, registrations in creation order)
    """
    tournament = TournamentRepository(session).create("Spring Cup", organizer_id=ORGANIZER, status=status)
    repo = RegistrationRepository(session)
    registrations = [
        repo.create(tournament.id, f"Club {i + 1:02d}", f"Coach {i + 1:02d}", status=registration_status)
        for i in range(team_count)
    ]
    return tournament, registrations


@pytest.fixture
def tournament_16(session):
    """Published tournament with 16 approved teams."""
    return create_tournament(session, 16)
