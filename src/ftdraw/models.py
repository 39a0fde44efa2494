"""Data models for ftdraw.

Domain model hierarchy:
- Tournament owns Registrations (teams), Groups and TournamentPots
- BracketData holds PlayoffRounds (knockout) and/or flat Match lists
  (round robin, league, group-stage fixtures)
- PlayoffRound contains Matches
- GroupStanding is derived from completed Matches, never stored
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

BYE = "BYE"


class BracketType(str, Enum):
    """Competition formats supported by the bracket generator."""

    GROUPS_ONLY = "GROUPS_ONLY"
    SINGLE_ELIMINATION = "SINGLE_ELIMINATION"
    DOUBLE_ELIMINATION = "DOUBLE_ELIMINATION"
    ROUND_ROBIN = "ROUND_ROBIN"
    GROUPS_PLUS_KNOCKOUT = "GROUPS_PLUS_KNOCKOUT"
    LEAGUE = "LEAGUE"


class MatchStatus(str, Enum):
    """Match status."""

    PENDING = "PENDING"  # Not yet played
    IN_PROGRESS = "IN_PROGRESS"  # Currently being played
    COMPLETED = "COMPLETED"  # Result entered or team advanced


class BracketLane(str, Enum):
    """Bracket column a playoff round belongs to (double elimination)."""

    WINNERS = "winners"
    LOSERS = "losers"
    GRAND_FINAL = "grand_final"


class RegistrationStatus(str, Enum):
    """Registration review status."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class TournamentStatus(str, Enum):
    """Tournament lifecycle status."""

    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class UserRole(str, Enum):
    """Roles of the acting user."""

    ADMIN = "ADMIN"
    ORGANIZER = "ORGANIZER"
    PARTICIPANT = "PARTICIPANT"
    USER = "USER"


# ============================================================================
# Bracket Models
# ============================================================================


@dataclass
class Match:
    """A fixture between two team slots.

    Team slots may be empty until earlier results are known. In round robin
    and league schedules ``team1_slot``/``team2_slot`` hold the 0-based
    schedule position of each side so fixtures are meaningful before the
    draw fills in team ids.
    """

    id: str
    round: int
    match_number: int
    team1_id: Optional[str] = None
    team2_id: Optional[str] = None
    team1_slot: Optional[int] = None
    team2_slot: Optional[int] = None
    team1_score: Optional[int] = None
    team2_score: Optional[int] = None
    winner_id: Optional[str] = None
    loser_id: Optional[str] = None
    manual_winner_id: Optional[str] = None  # Organizer forced the outcome
    is_manual_override: bool = False
    status: MatchStatus = MatchStatus.PENDING
    next_match_id: Optional[str] = None
    loser_next_match_id: Optional[str] = None  # Double elimination / 3rd place
    auto_advance: bool = False  # BYE: team1 advances without playing
    group_letter: Optional[str] = None  # Set on group-stage fixtures

    @property
    def is_completed(self) -> bool:
        """Check if match is finished."""
        return self.status == MatchStatus.COMPLETED

    @property
    def is_bye(self) -> bool:
        """Check if this is a BYE match."""
        return self.auto_advance or self.team2_id == BYE

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Match":
        """Build a Match from the dict produced by ``to_dict``."""
        values = dict(data)
        values["status"] = MatchStatus(values.get("status", MatchStatus.PENDING.value))
        return cls(**values)

    def __str__(self) -> str:
        """String representation."""
        team1 = self.team1_id or "TBD"
        team2 = self.team2_id or "TBD"
        if self.is_completed and self.team1_score is not None:
            return f"{self.id}: {team1} {self.team1_score}-{self.team2_score} {team2}"
        return f"{self.id}: {team1} vs {team2}"


@dataclass
class PlayoffRound:
    """Matches sharing a round number and display name."""

    round_number: int
    round_name: str
    matches: list[Match] = field(default_factory=list)
    bracket: Optional[BracketLane] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_number": self.round_number,
            "round_name": self.round_name,
            "matches": [m.to_dict() for m in self.matches],
            "bracket": self.bracket.value if self.bracket else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlayoffRound":
        return cls(
            round_number=data["round_number"],
            round_name=data["round_name"],
            matches=[Match.from_dict(m) for m in data.get("matches", [])],
            bracket=BracketLane(data["bracket"]) if data.get("bracket") else None,
        )

    def __str__(self) -> str:
        return f"{self.round_name} ({len(self.matches)} matches)"


@dataclass
class BracketData:
    """Generated competition structure for a tournament or age group.

    Knockout formats fill ``playoff_rounds``; round robin and league fill
    ``matches``. Group formats built for a drawn tournament also carry the
    round-robin fixtures of every group in ``group_matches``.
    """

    type: BracketType
    group_count: Optional[int] = None
    teams_per_group: Optional[int] = None
    advancing_teams_per_group: Optional[int] = None
    playoff_rounds: list[PlayoffRound] = field(default_factory=list)
    matches: list[Match] = field(default_factory=list)
    group_matches: dict[str, list[Match]] = field(default_factory=dict)
    third_place_match: bool = False
    seed: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        return {
            "type": self.type.value,
            "group_count": self.group_count,
            "teams_per_group": self.teams_per_group,
            "advancing_teams_per_group": self.advancing_teams_per_group,
            "playoff_rounds": [r.to_dict() for r in self.playoff_rounds],
            "matches": [m.to_dict() for m in self.matches],
            "group_matches": {
                letter: [m.to_dict() for m in fixtures]
                for letter, fixtures in self.group_matches.items()
            },
            "third_place_match": self.third_place_match,
            "seed": self.seed,
            "generated_at": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BracketData":
        """Build BracketData from the dict produced by ``to_dict``."""
        generated_at = data.get("generated_at")
        return cls(
            type=BracketType(data["type"]),
            group_count=data.get("group_count"),
            teams_per_group=data.get("teams_per_group"),
            advancing_teams_per_group=data.get("advancing_teams_per_group"),
            playoff_rounds=[PlayoffRound.from_dict(r) for r in data.get("playoff_rounds", [])],
            matches=[Match.from_dict(m) for m in data.get("matches", [])],
            group_matches={
                letter: [Match.from_dict(m) for m in fixtures]
                for letter, fixtures in data.get("group_matches", {}).items()
            },
            third_place_match=data.get("third_place_match", False),
            seed=data.get("seed"),
            generated_at=datetime.fromisoformat(generated_at) if generated_at else datetime.utcnow(),
        )

    def __str__(self) -> str:
        """String representation."""
        total = sum(len(r.matches) for r in self.playoff_rounds) + len(self.matches)
        return f"{self.type.value} bracket ({total} matches, seed={self.seed})"


# ============================================================================
# Group Stage Models
# ============================================================================


@dataclass
class GroupStanding:
    """Computed table row for a team within its group.

    Scoring: 3 points for a win, 1 for a draw, 0 for a loss.
    """

    team_id: str
    played: int = 0
    won: int = 0
    drawn: int = 0
    lost: int = 0
    goals_for: int = 0
    goals_against: int = 0
    goal_difference: int = 0
    points: int = 0
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        """String representation."""
        return (
            f"#{self.position} {self.team_id}: {self.points}pts "
            f"{self.won}W-{self.drawn}D-{self.lost}L ({self.goal_difference:+d})"
        )


# ============================================================================
# Pot Draw Models
# ============================================================================


@dataclass
class PotValidation:
    """Result of checking how teams are spread across pots."""

    valid: bool
    message: str
    pot_counts: dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
