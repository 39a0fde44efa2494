"""Relational storage layer for ftdraw.

Provides ORM models and repository pattern for data persistence.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from ftdraw.models import BracketData, RegistrationStatus, TournamentStatus

Base = declarative_base()


def new_id() -> str:
    """Generate a primary key for a new row."""
    return uuid.uuid4().hex


# ============================================================================
# ORM Models
# ============================================================================


class TournamentORM(Base):
    """Tournament table.

    Only the columns the draw engine reads or writes are mapped here.
    """

    __tablename__ = "tournaments"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    organizer_id = Column(String(36), nullable=True)
    status = Column(String(20), nullable=False, default=TournamentStatus.DRAFT.value)
    draw_completed = Column(Boolean, nullable=False, default=False)
    draw_seed = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    registrations = relationship("RegistrationORM", back_populates="tournament")
    groups = relationship("GroupORM", back_populates="tournament")


class RegistrationORM(Base):
    """Team registration table (one club team entered in a tournament)."""

    __tablename__ = "registrations"

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_id = Column(String(36), ForeignKey("tournaments.id"), nullable=False)
    club_name = Column(String(200), nullable=False)
    coach_name = Column(String(200), nullable=True)
    status = Column(String(20), nullable=False, default=RegistrationStatus.PENDING.value)
    group_assignment = Column(String(5), nullable=True)  # Group letter after the draw
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tournament = relationship("TournamentORM", back_populates="registrations")


class GroupORM(Base):
    """Group table."""

    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_id = Column(String(36), ForeignKey("tournaments.id"), nullable=False)
    group_letter = Column(String(5), nullable=False)  # A, B, C, etc.
    group_order = Column(Integer, nullable=False, default=0)
    # Store registration ids as JSON array
    teams_json = Column(Text, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    tournament = relationship("TournamentORM", back_populates="groups")

    @property
    def teams(self) -> list[str]:
        """Get registration IDs from JSON."""
        return json.loads(self.teams_json)

    @teams.setter
    def teams(self, value: list[str]):
        """Set registration IDs as JSON."""
        self.teams_json = json.dumps(value)


class TournamentPotORM(Base):
    """Pot assignment table: which pot (1-4) a registration is drawn from."""

    __tablename__ = "tournament_pots"
    __table_args__ = (
        UniqueConstraint("tournament_id", "registration_id", name="uq_pot_registration"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_id = Column(String(36), ForeignKey("tournaments.id"), nullable=False)
    registration_id = Column(String(36), ForeignKey("registrations.id"), nullable=False)
    pot_number = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    registration = relationship("RegistrationORM")


class BracketORM(Base):
    """Stored bracket of a tournament, optionally per age group."""

    __tablename__ = "brackets"

    id = Column(String(36), primary_key=True, default=new_id)
    tournament_id = Column(String(36), ForeignKey("tournaments.id"), nullable=False)
    age_group_id = Column(String(36), nullable=True)
    bracket_type = Column(String(30), nullable=False)
    data_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def data(self) -> BracketData:
        """Get bracket structure from JSON."""
        return BracketData.from_dict(json.loads(self.data_json))

    @data.setter
    def data(self, value: BracketData):
        """Set bracket structure as JSON."""
        self.bracket_type = value.type.value
        self.data_json = json.dumps(value.to_dict())


# ============================================================================
# Database Manager
# ============================================================================


class DatabaseManager:
    """Manages database connection and session."""

    def __init__(self, url: str = "sqlite:///.ftdraw/ftdraw.sqlite"):
        """Initialize database manager.

        Args:
            url: SQLAlchemy database URL
        """
        self.url = make_url(url)
        engine_options = {"echo": False}

        if self.url.get_backend_name() == "sqlite":
            engine_options["connect_args"] = {"check_same_thread": False}
            if self.url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_options["poolclass"] = StaticPool
            else:
                Path(self.url.database).parent.mkdir(parents=True, exist_ok=True)
                # Use NullPool for SQLite to avoid connection pool issues
                engine_options["poolclass"] = NullPool

        self.engine = create_engine(self.url, **engine_options)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(self.engine)

    def drop_tables(self):
        """Drop all tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()


# ============================================================================
# Repository Pattern
# ============================================================================


class TournamentRepository:
    """Repository for Tournament operations."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        name: str,
        organizer_id: str = None,
        status: str = TournamentStatus.PUBLISHED.value,
    ) -> TournamentORM:
        """Create a new tournament."""
        tournament = TournamentORM(
            name=name,
            organizer_id=organizer_id,
            status=status,
            draw_completed=False,
        )
        self.session.add(tournament)
        self.session.commit()
        return tournament

    def get_by_id(self, tournament_id: str, lock: bool = False) -> Optional[TournamentORM]:
        """Get tournament by ID.

        Args:
            tournament_id: Tournament ID
            lock: Take a row lock (SELECT ... FOR UPDATE) until the transaction ends
        """
        query = self.session.query(TournamentORM).filter(TournamentORM.id == tournament_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def mark_draw(self, tournament: TournamentORM, completed: bool, seed: str = None) -> None:
        """Set the draw flag and seed. Does not commit."""
        tournament.draw_completed = completed
        tournament.draw_seed = seed


class RegistrationRepository:
    """Repository for Registration operations."""

    def __init__(self, session):
        self.session = session

    def create(
        self,
        tournament_id: str,
        club_name: str,
        coach_name: str = None,
        status: str = RegistrationStatus.PENDING.value,
    ) -> RegistrationORM:
        """Create a new registration."""
        registration = RegistrationORM(
            tournament_id=tournament_id,
            club_name=club_name,
            coach_name=coach_name,
            status=status,
        )
        self.session.add(registration)
        self.session.commit()
        return registration

    def get_by_id(self, registration_id: str) -> Optional[RegistrationORM]:
        """Get registration by ID."""
        return self.session.query(RegistrationORM).filter(RegistrationORM.id == registration_id).first()

    def get_in_tournament(self, tournament_id: str, registration_id: str) -> Optional[RegistrationORM]:
        """Get a registration only if it belongs to the tournament."""
        return (
            self.session.query(RegistrationORM)
            .filter(
                RegistrationORM.id == registration_id,
                RegistrationORM.tournament_id == tournament_id,
            )
            .first()
        )

    def get_by_tournament(self, tournament_id: str, status: str = None) -> list[RegistrationORM]:
        """Get registrations of a tournament in registration order.

        Args:
            tournament_id: Tournament ID
            status: Optional status filter (e.g. APPROVED)
        """
        query = self.session.query(RegistrationORM).filter(RegistrationORM.tournament_id == tournament_id)
        if status is not None:
            query = query.filter(RegistrationORM.status == status)
        return query.order_by(RegistrationORM.created_at, RegistrationORM.id).all()

    def get_approved(self, tournament_id: str) -> list[RegistrationORM]:
        """Get approved registrations of a tournament."""
        return self.get_by_tournament(tournament_id, RegistrationStatus.APPROVED.value)

    def update_status(self, registration_id: str, status: str) -> bool:
        """Update registration status."""
        registration = self.get_by_id(registration_id)
        if registration:
            registration.status = status
            self.session.commit()
            return True
        return False

    def clear_group_assignments(self, tournament_id: str) -> int:
        """Remove the group letter from every registration. Does not commit."""
        return (
            self.session.query(RegistrationORM)
            .filter(RegistrationORM.tournament_id == tournament_id)
            .update({RegistrationORM.group_assignment: None}, synchronize_session="fetch")
        )


class GroupRepository:
    """Repository for Group operations."""

    def __init__(self, session):
        self.session = session

    def add(
        self, tournament_id: str, group_letter: str, teams: list[str], group_order: int = 0
    ) -> GroupORM:
        """Stage a new group in the session. Does not commit.

        Args:
            tournament_id: Tournament the group belongs to
            group_letter: Group letter (A, B, C, ...)
            teams: Registration IDs in draw order
            group_order: Display order

        Returns:
            Pending GroupORM instance
        """
        group_orm = GroupORM(
            tournament_id=tournament_id,
            group_letter=group_letter,
            teams_json=json.dumps(teams),
            group_order=group_order,
        )
        self.session.add(group_orm)
        return group_orm

    def get_by_id(self, tournament_id: str, group_id: str) -> Optional[GroupORM]:
        """Get a group only if it belongs to the tournament."""
        return (
            self.session.query(GroupORM)
            .filter(GroupORM.id == group_id, GroupORM.tournament_id == tournament_id)
            .first()
        )

    def get_by_letter(self, tournament_id: str, group_letter: str) -> Optional[GroupORM]:
        """Get group by letter.

        Returns:
            GroupORM if found, None otherwise
        """
        return (
            self.session.query(GroupORM)
            .filter(GroupORM.tournament_id == tournament_id, GroupORM.group_letter == group_letter)
            .first()
        )

    def get_by_tournament(self, tournament_id: str) -> list[GroupORM]:
        """Get all groups of a tournament ordered by group order, then letter."""
        return (
            self.session.query(GroupORM)
            .filter(GroupORM.tournament_id == tournament_id)
            .order_by(GroupORM.group_order, GroupORM.group_letter)
            .all()
        )

    def delete_by_tournament(self, tournament_id: str) -> int:
        """Delete all groups of a tournament. Does not commit.

        Returns:
            Number of groups deleted
        """
        return self.session.query(GroupORM).filter(GroupORM.tournament_id == tournament_id).delete()


class PotRepository:
    """Repository for TournamentPot operations."""

    def __init__(self, session):
        self.session = session

    def get_by_registration(self, tournament_id: str, registration_id: str) -> Optional[TournamentPotORM]:
        """Get the pot assignment of a registration."""
        return (
            self.session.query(TournamentPotORM)
            .filter(
                TournamentPotORM.tournament_id == tournament_id,
                TournamentPotORM.registration_id == registration_id,
            )
            .first()
        )

    def upsert(self, tournament_id: str, registration_id: str, pot_number: int) -> TournamentPotORM:
        """Create the assignment or move it to another pot.

        Returns:
            Saved TournamentPotORM instance
        """
        pot = self.get_by_registration(tournament_id, registration_id)
        if pot:
            pot.pot_number = pot_number
        else:
            pot = TournamentPotORM(
                tournament_id=tournament_id,
                registration_id=registration_id,
                pot_number=pot_number,
            )
            self.session.add(pot)
        self.session.commit()
        self.session.refresh(pot)
        return pot

    def get_by_tournament(self, tournament_id: str) -> list[TournamentPotORM]:
        """Get all assignments ordered by pot number, then creation time."""
        return (
            self.session.query(TournamentPotORM)
            .filter(TournamentPotORM.tournament_id == tournament_id)
            .order_by(TournamentPotORM.pot_number, TournamentPotORM.created_at, TournamentPotORM.registration_id)
            .all()
        )

    def delete_by_tournament(self, tournament_id: str) -> int:
        """Delete all pot assignments of a tournament.

        Returns:
            Number of assignments deleted
        """
        count = (
            self.session.query(TournamentPotORM)
            .filter(TournamentPotORM.tournament_id == tournament_id)
            .delete()
        )
        self.session.commit()
        return count


class BracketRepository:
    """Repository for stored brackets."""

    def __init__(self, session):
        self.session = session

    def _query(self, tournament_id: str, age_group_id: str = None):
        query = self.session.query(BracketORM).filter(BracketORM.tournament_id == tournament_id)
        if age_group_id is None:
            return query.filter(BracketORM.age_group_id.is_(None))
        return query.filter(BracketORM.age_group_id == age_group_id)

    def get(self, tournament_id: str, age_group_id: str = None) -> Optional[BracketORM]:
        """Get the bracket of a tournament (or one of its age groups)."""
        return self._query(tournament_id, age_group_id).first()

    def save(self, tournament_id: str, data: BracketData, age_group_id: str = None) -> BracketORM:
        """Create or replace the bracket of a tournament / age group."""
        bracket = self.get(tournament_id, age_group_id)
        if bracket is None:
            bracket = BracketORM(tournament_id=tournament_id, age_group_id=age_group_id)
            self.session.add(bracket)
        bracket.data = data
        self.session.commit()
        return bracket
