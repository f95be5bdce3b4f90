"""Command line interface for the transaction retry toolkit.

Entry point for the ``db-transaction-retry`` command.
"""

from typing import Optional

import typer
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import SQLAlchemyError

from transaction_retry.config import Settings
from transaction_retry.db.schema import create_all
from transaction_retry.retry.toggle import RetryToggle, is_explicitly_disabled_value

__all__ = ["app"]

app = typer.Typer(
    name="db-transaction-retry",
    help="Database transaction retry: toggle retries and install the observability tables.",
    no_args_is_help=True,
)


def _load_settings() -> Settings:
    # Read at call time so environment changes between invocations apply
    return Settings()


def _toggle(settings: Settings) -> RetryToggle:
    return RetryToggle(settings.STATE_PATH, settings.ENABLED)


def _state(toggle: RetryToggle) -> str:
    return "ENABLED" if toggle.is_enabled() else "DISABLED"


@app.command()
def start() -> None:
    """Enable database transaction retry handling."""
    settings = _load_settings()
    if is_explicitly_disabled_value(settings.ENABLED):
        typer.echo(
            "Base configuration keeps retries disabled. Set DB_TRANSACTION_RETRY_ENABLED=true "
            "if you want retries to stay on.",
            err=True,
        )
        return

    toggle = _toggle(settings)
    persisted = toggle.enable()

    if persisted:
        typer.echo("Database transaction retries have been enabled.")
        typer.echo(f"Cleared toggle marker: {toggle.marker_path}")
        typer.echo(f"Current status: {_state(toggle)}")
    else:
        typer.echo(
            "Database transaction retries could not be fully enabled because the toggle "
            "marker could not be removed.",
            err=True,
        )
        typer.echo(f"Please delete {toggle.marker_path} manually or adjust permissions.")
        typer.echo(f"Current status: {_state(toggle)} (marker still present; retries remain disabled)")


@app.command()
def stop() -> None:
    """Disable database transaction retry handling."""
    settings = _load_settings()
    if is_explicitly_disabled_value(settings.ENABLED):
        typer.echo(
            "Base configuration already disables retries via DB_TRANSACTION_RETRY_ENABLED.",
            err=True,
        )
        return

    toggle = _toggle(settings)
    persisted = toggle.disable()

    if persisted:
        typer.echo("Database transaction retries have been disabled.")
        typer.echo(f"Created toggle marker: {toggle.marker_path}")
        typer.echo(f"Current status: {_state(toggle)}")
    else:
        typer.echo(
            "Database transaction retries disabled for this process, but the toggle marker "
            "could not be written.",
            err=True,
        )
        typer.echo(f"Please create {toggle.marker_path} manually or adjust permissions.")
        typer.echo(f"Current status: {_state(toggle)} (runtime only; persistence failed)")
        typer.echo("Retries will be re-enabled on the next run unless the marker is created manually.", err=True)


@app.command()
def status() -> None:
    """Show whether retries are enabled and where the toggle marker lives."""
    settings = _load_settings()
    toggle = _toggle(settings)
    typer.echo(f"Current status: {_state(toggle)}")
    typer.echo(f"Configured default: {'enabled' if settings.ENABLED else 'disabled'}")
    typer.echo(f"Toggle marker: {toggle.marker_path} ({'present' if toggle.marker_path.exists() else 'absent'})")


@app.command()
def install(
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        help="Observability database URL (defaults to LOG_DATABASE_URL, then DATABASE_URL).",
    ),
) -> None:
    """Create the observability tables that are missing."""
    settings = _load_settings()
    url = database_url or settings.log_database_url
    engine = create_engine(url)
    try:
        tables = create_all(engine, settings)
        existing = set(inspect(engine).get_table_names())
    except SQLAlchemyError as e:
        typer.echo(f"Error: could not create tables on {engine.url!r}: {e}", err=True)
        raise typer.Exit(1) from None
    finally:
        engine.dispose()

    for table in tables.metadata.sorted_tables:
        marker = "ok" if table.name in existing else "missing"
        typer.echo(f"  {table.name}: {marker}")
    typer.echo("Observability tables installed.")


if __name__ == "__main__":
    app()
