"""Command-line interface for ftdraw."""

import logging
import os

import click

from ftdraw import __version__
from ftdraw.models import BracketType


def _setup(config_path: str):
    """Load config and configure logging. Aborts on a bad config file."""
    from ftdraw.config_loader import ConfigError, load_and_validate_config

    try:
        cfg = load_and_validate_config(config_path)
    except ConfigError as e:
        click.echo(f"[ERROR] Configuration Error: {e}", err=True)
        raise click.Abort()

    logging.basicConfig(
        level=cfg["log_level"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return cfg


config_option = click.option(
    "--config", "config_path", required=False, help="Path to config YAML file (defaults apply when omitted)"
)


@click.group()
@click.version_option(version=__version__)
def cli():
    """ftdraw - group draws and brackets for football tournaments."""
    pass


@cli.command()
@config_option
def init_db(config_path: str):
    """Create the database tables.

    Example:
        ftdraw init-db --config config/ftdraw.yaml
    """
    from ftdraw.storage import DatabaseManager

    cfg = _setup(config_path)
    db = DatabaseManager(cfg["database_url"])
    db.create_tables()
    click.echo(f"[SUCCESS] Tables created in {cfg['database_url']}")


@cli.command()
@click.option(
    "--type",
    "bracket_type",
    required=True,
    type=click.Choice([t.value for t in BracketType], case_sensitive=False),
    help="Competition format",
)
@click.option("--teams", required=True, type=int, help="Number of teams")
@click.option("--groups", type=int, default=None, help="Number of groups (group formats)")
@click.option("--advancing", type=int, default=None, help="Teams per group reaching the knockout stage")
@click.option("--third-place/--no-third-place", default=None, help="Add a third place match")
@click.option("--legs", type=click.IntRange(1, 2), default=None, help="League legs")
@click.option("--seed", default=None, help="Seed stored with the bracket")
@config_option
def preview(bracket_type, teams, groups, advancing, third_place, legs, seed, config_path):
    """Print the structure of a bracket without saving anything.

    Example:
        ftdraw preview --type SINGLE_ELIMINATION --teams 6 --third-place
    """
    from ftdraw.bracket import generate_bracket

    cfg = _setup(config_path)

    try:
        bracket = generate_bracket(
            BracketType(bracket_type.upper()),
            teams,
            group_count=groups,
            advancing_per_group=advancing or cfg["advancing_per_group"],
            third_place_match=cfg["third_place_match"] if third_place is None else third_place,
            seed=seed,
            league_legs=legs or cfg["league_legs"],
        )
    except ValueError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo(f"[INFO] {bracket}")
    if bracket.group_count:
        click.echo(f"  Groups: {bracket.group_count} x up to {bracket.teams_per_group} teams")

    for playoff_round in bracket.playoff_rounds:
        click.echo(f"\n  {playoff_round.round_number}. {playoff_round}")
        for match in playoff_round.matches:
            links = []
            if match.next_match_id:
                links.append(f"winner -> {match.next_match_id}")
            if match.loser_next_match_id:
                links.append(f"loser -> {match.loser_next_match_id}")
            bye = " [BYE]" if match.is_bye else ""
            click.echo(f"     {match.id}{bye}  {', '.join(links)}")

    current_round = None
    for match in bracket.matches:
        if match.round != current_round:
            current_round = match.round
            click.echo(f"\n  Round {current_round}")
        click.echo(f"     {match.id}: slot {match.team1_slot + 1} vs slot {match.team2_slot + 1}")


@cli.command()
@click.option("--tournament", "tournament_id", required=True, help="Tournament ID")
@click.option("--groups", "number_of_groups", required=True, type=int, help="Number of groups")
@click.option("--user", "user_id", required=True, help="Acting user ID")
@click.option("--role", "user_role", default="ORGANIZER", help="Acting user role")
@config_option
def pot_draw(tournament_id, number_of_groups, user_id, user_role, config_path):
    """Run the pot-based draw of a tournament.

    Example:
        ftdraw pot-draw --tournament 3f2a... --groups 4 --user 42
    """
    from ftdraw.errors import DrawError
    from ftdraw.pot_draw import PotDrawService
    from ftdraw.storage import DatabaseManager, RegistrationRepository

    cfg = _setup(config_path)
    db = DatabaseManager(cfg["database_url"])
    session = db.get_session()

    try:
        service = PotDrawService(session, strict_pots=cfg["pot_draw"]["strict_pots"])
        groups = service.execute_pot_based_draw(tournament_id, number_of_groups, user_id, user_role)

        registrations = RegistrationRepository(session)
        click.echo(f"[SUCCESS] Drew {len(groups)} groups")
        for group in groups:
            click.echo(f"\n  Group {group.group_letter}:")
            for team_id in group.teams:
                registration = registrations.get_by_id(team_id)
                click.echo(f"     {registration.club_name if registration else team_id}")
    except DrawError as e:
        click.echo(f"[ERROR] {e.message}", err=True)
        raise click.Abort()
    finally:
        session.close()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8000, help="Port to bind to")
@config_option
def serve(host: str, port: int, config_path: str):
    """Launch the JSON API.

    Example:
        ftdraw serve --port 8000 --config config/ftdraw.yaml
    """
    import uvicorn

    cfg = _setup(config_path)
    if config_path:
        os.environ["FTDRAW_CONFIG"] = config_path

    from ftdraw.webapp.app import app

    click.echo(f"[INFO] Starting API at http://{host}:{port}")
    click.echo("[INFO] Press CTRL+C to stop")

    try:
        uvicorn.run(app, host=host, port=port, log_level=cfg["log_level"].lower())
    except KeyboardInterrupt:
        click.echo("\n[INFO] Shutting down...")


if __name__ == "__main__":
    cli()
