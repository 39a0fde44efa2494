"""FastAPI JSON API for ftdraw.

The acting user is identified by the ``X-User-Id`` and ``X-User-Role``
headers set by the gateway in front of this service.
"""

import logging
import os
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ftdraw import __version__
from ftdraw.config_loader import load_and_validate_config
from ftdraw.draw_service import DrawService, group_to_dict
from ftdraw.errors import DrawError
from ftdraw.models import BracketType, MatchStatus
from ftdraw.pot_draw import PotDrawService
from ftdraw.storage import DatabaseManager, RegistrationRepository, TournamentPotORM

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(title="ftdraw - Football Tournament Draws", version=__version__)


@lru_cache(maxsize=1)
def get_config() -> dict[str, Any]:
    """Validated config from $FTDRAW_CONFIG, or the defaults."""
    return load_and_validate_config(os.environ.get("FTDRAW_CONFIG"))


@lru_cache(maxsize=1)
def get_db_manager() -> DatabaseManager:
    """Database manager (shared instance)."""
    db_manager = DatabaseManager(get_config()["database_url"])
    db_manager.create_tables()  # Ensure tables exist
    return db_manager


def get_db_session():
    """Get database session, closed after the request."""
    session = get_db_manager().get_session()
    try:
        yield session
    finally:
        session.close()


class ActingUser(BaseModel):
    user_id: str
    role: Optional[str] = None


def acting_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> ActingUser:
    """Acting user of a mutating request."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return ActingUser(user_id=x_user_id, role=x_user_role)


def get_draw_service(session=Depends(get_db_session), config=Depends(get_config)) -> DrawService:
    return DrawService(session, config)


def get_pot_service(session=Depends(get_db_session), config=Depends(get_config)) -> PotDrawService:
    return PotDrawService(session, strict_pots=config["pot_draw"]["strict_pots"])


@app.exception_handler(DrawError)
async def draw_error_handler(request: Request, exc: DrawError):
    """Answer service errors with their kind and message."""
    logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


# Request models


class ExecuteDrawRequest(BaseModel):
    number_of_groups: Optional[int] = Field(None, description="Defaults to ceil(teams / group size)")
    seed: Optional[str] = Field(None, description="Seed for a reproducible draw")


class CreateGroupRequest(BaseModel):
    group_letter: str = Field(..., min_length=1, max_length=5)
    teams: list[str] = Field(default_factory=list)
    group_order: int = 0


class UpdateGroupRequest(BaseModel):
    teams: Optional[list[str]] = None
    group_letter: Optional[str] = Field(None, min_length=1, max_length=5)


class GroupAssignment(BaseModel):
    registration_id: str
    group_letter: str = Field(..., min_length=1, max_length=5)


class UpdateBracketRequest(BaseModel):
    assignments: list[GroupAssignment]


class GenerateBracketRequest(BaseModel):
    bracket_type: Optional[BracketType] = None
    age_group_id: Optional[str] = None
    group_count: Optional[int] = Field(None, ge=1)
    advancing_per_group: Optional[int] = Field(None, ge=1)
    third_place_match: Optional[bool] = None
    seed: Optional[str] = None
    league_legs: Optional[int] = Field(None, ge=1, le=2)


class AdvanceToKnockoutRequest(BaseModel):
    age_group_id: Optional[str] = None


class MatchScoreRequest(BaseModel):
    team1_score: Optional[int] = None
    team2_score: Optional[int] = None
    advancing_team_id: Optional[str] = None
    status: Optional[MatchStatus] = None
    age_group_id: Optional[str] = None


class MatchAdvanceRequest(BaseModel):
    team_id: str
    age_group_id: Optional[str] = None


class AssignPotRequest(BaseModel):
    registration_id: str
    pot_number: int


class BulkAssignPotRequest(BaseModel):
    assignments: list[AssignPotRequest]


class ValidatePotsRequest(BaseModel):
    expected_per_pot: Optional[int] = None


class PotDrawRequest(BaseModel):
    number_of_groups: int


def pot_to_dict(pot: TournamentPotORM) -> dict[str, Any]:
    return {
        "id": pot.id,
        "tournament_id": pot.tournament_id,
        "registration_id": pot.registration_id,
        "pot_number": pot.pot_number,
        "created_at": pot.created_at.isoformat() if pot.created_at else None,
    }


def _groups_response(session, tournament_id: str, groups) -> list[dict[str, Any]]:
    registrations = {r.id: r for r in RegistrationRepository(session).get_by_tournament(tournament_id)}
    return [group_to_dict(g, registrations) for g in groups]


@app.get("/")
def read_root():
    return {"service": "ftdraw", "version": __version__}


# ============================================================================
# Group draw
# ============================================================================


@app.post("/tournaments/{tournament_id}/draw", status_code=201)
def execute_draw(
    tournament_id: str,
    body: ExecuteDrawRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    """Random seeded draw of the approved teams into groups."""
    groups = service.execute_draw(tournament_id, user.user_id, user.role, body.number_of_groups, body.seed)
    return _groups_response(service.session, tournament_id, groups)


@app.delete("/tournaments/{tournament_id}/draw")
def reset_draw(
    tournament_id: str,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    service.reset_draw(tournament_id, user.user_id, user.role)
    return {"message": "Draw reset", "draw_completed": False}


@app.get("/tournaments/{tournament_id}/groups")
def get_groups(tournament_id: str, service: DrawService = Depends(get_draw_service)):
    return service.get_groups(tournament_id)


@app.post("/tournaments/{tournament_id}/groups", status_code=201)
def create_group(
    tournament_id: str,
    body: CreateGroupRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    group = service.create_group(
        tournament_id, user.user_id, user.role, body.group_letter, body.teams, body.group_order
    )
    return _groups_response(service.session, tournament_id, [group])[0]


@app.patch("/tournaments/{tournament_id}/groups/{group_id}")
def update_group(
    tournament_id: str,
    group_id: str,
    body: UpdateGroupRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    """Change the teams or the letter of one group."""
    group = service.update_group(
        tournament_id, group_id, user.user_id, user.role, teams=body.teams, group_letter=body.group_letter
    )
    return _groups_response(service.session, tournament_id, [group])[0]


@app.get("/tournaments/{tournament_id}/bracket")
def get_bracket(
    tournament_id: str,
    age_group_id: Optional[str] = None,
    service: DrawService = Depends(get_draw_service),
):
    return service.get_bracket(tournament_id, age_group_id)


@app.patch("/tournaments/{tournament_id}/bracket")
def update_bracket(
    tournament_id: str,
    body: UpdateBracketRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    """Move teams between groups by hand."""
    assignments = [a.model_dump() for a in body.assignments]
    groups = service.update_bracket(tournament_id, user.user_id, user.role, assignments)
    return _groups_response(service.session, tournament_id, groups)


# ============================================================================
# Brackets and matches
# ============================================================================


@app.post("/tournaments/{tournament_id}/bracket/generate", status_code=201)
def generate_bracket(
    tournament_id: str,
    body: GenerateBracketRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    options = body.model_dump(exclude_none=True)
    bracket = service.generate_bracket(tournament_id, user.user_id, user.role, **options)
    return bracket.to_dict()


@app.post("/tournaments/{tournament_id}/bracket/advance")
def advance_to_knockout(
    tournament_id: str,
    body: Optional[AdvanceToKnockoutRequest] = None,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    """Seed group qualifiers into the knockout rounds."""
    age_group_id = body.age_group_id if body else None
    return service.advance_to_knockout(tournament_id, user.user_id, user.role, age_group_id).to_dict()


@app.get("/tournaments/{tournament_id}/matches")
def get_matches(
    tournament_id: str,
    age_group_id: Optional[str] = None,
    service: DrawService = Depends(get_draw_service),
):
    return [m.to_dict() for m in service.get_matches(tournament_id, age_group_id)]


@app.patch("/tournaments/{tournament_id}/matches/{match_id}/score")
def update_match_score(
    tournament_id: str,
    match_id: str,
    body: MatchScoreRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    match = service.update_match_score(
        tournament_id,
        match_id,
        user.user_id,
        user.role,
        team1_score=body.team1_score,
        team2_score=body.team2_score,
        advancing_team_id=body.advancing_team_id,
        status=body.status,
        age_group_id=body.age_group_id,
    )
    return match.to_dict()


@app.patch("/tournaments/{tournament_id}/matches/{match_id}/advance")
def set_match_advancement(
    tournament_id: str,
    match_id: str,
    body: MatchAdvanceRequest,
    user: ActingUser = Depends(acting_user),
    service: DrawService = Depends(get_draw_service),
):
    match = service.set_match_advancement(
        tournament_id, match_id, body.team_id, user.user_id, user.role, body.age_group_id
    )
    return match.to_dict()


@app.get("/tournaments/{tournament_id}/standings")
def get_standings(
    tournament_id: str,
    age_group_id: Optional[str] = None,
    service: DrawService = Depends(get_draw_service),
):
    standings = service.get_standings(tournament_id, age_group_id)
    return {letter: [s.to_dict() for s in rows] for letter, rows in standings.items()}


# ============================================================================
# Pots
# ============================================================================


@app.post("/tournaments/{tournament_id}/pots/assign")
def assign_team_to_pot(
    tournament_id: str,
    body: AssignPotRequest,
    user: ActingUser = Depends(acting_user),
    service: PotDrawService = Depends(get_pot_service),
):
    pot = service.assign_team_to_pot(tournament_id, body.registration_id, body.pot_number, user.user_id, user.role)
    return pot_to_dict(pot)


@app.post("/tournaments/{tournament_id}/pots/bulk-assign")
def assign_teams_to_pots_bulk(
    tournament_id: str,
    body: BulkAssignPotRequest,
    user: ActingUser = Depends(acting_user),
    service: PotDrawService = Depends(get_pot_service),
):
    assignments = [a.model_dump() for a in body.assignments]
    pots = service.assign_teams_to_pots_bulk(tournament_id, assignments, user.user_id, user.role)
    return [pot_to_dict(p) for p in pots]


@app.get("/tournaments/{tournament_id}/pots")
def get_pot_assignments(tournament_id: str, service: PotDrawService = Depends(get_pot_service)):
    """Pots 1-4 with the club and coach of every team."""
    pots = service.get_pot_assignments(tournament_id)
    return [
        {
            "pot_number": pot_number,
            "count": len(assignments),
            "teams": [
                {
                    "registration_id": a.registration_id,
                    "club_name": a.registration.club_name if a.registration else None,
                    "coach_name": a.registration.coach_name if a.registration else None,
                }
                for a in assignments
            ],
        }
        for pot_number, assignments in sorted(pots.items())
    ]


@app.post("/tournaments/{tournament_id}/pots/validate")
def validate_pot_distribution(
    tournament_id: str,
    body: Optional[ValidatePotsRequest] = None,
    service: PotDrawService = Depends(get_pot_service),
):
    expected = body.expected_per_pot if body else None
    return service.validate_pot_distribution(tournament_id, expected).to_dict()


@app.post("/tournaments/{tournament_id}/pots/draw", status_code=201)
def execute_pot_draw(
    tournament_id: str,
    body: PotDrawRequest,
    user: ActingUser = Depends(acting_user),
    service: PotDrawService = Depends(get_pot_service),
):
    """Draw the groups from the pots."""
    groups = service.execute_pot_based_draw(tournament_id, body.number_of_groups, user.user_id, user.role)
    return _groups_response(service.session, tournament_id, groups)


@app.delete("/tournaments/{tournament_id}/pots")
def clear_pot_assignments(
    tournament_id: str,
    user: ActingUser = Depends(acting_user),
    service: PotDrawService = Depends(get_pot_service),
):
    deleted = service.clear_pot_assignments(tournament_id, user.user_id, user.role)
    return {"deleted": deleted}
