"""
CLI entry point for CreditSwap.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog
import typer

from .config import Settings, get_settings
from .fees import FeeSchedule, calculate_swap_fees, describe_fees
from .validation import validate_credits_amount

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ]
)

app = typer.Typer(
    name="creditswap",
    help="CreditSwap credit -> SOL -> BTC swap service",
    add_completion=False,
)


def _load_settings(config_path: Optional[Path]) -> Settings:
    if config_path is None:
        return get_settings()
    if not config_path.exists():
        typer.echo(f"Config file not found: {config_path}", err=True)
        raise typer.Exit(code=1)
    return Settings(_env_file=config_path)


@app.command()
def serve() -> None:
    """
    Run the HTTP API (host/port/reload from environment).
    """
    from .main import run

    run()


@app.command()
def quote(
    credits_amount: int = typer.Argument(..., help="Credits to swap"),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
) -> None:
    """
    Show the fee breakdown for a swap (no network access).
    """
    settings = _load_settings(config_path)

    check = validate_credits_amount(
        credits_amount,
        settings.min_withdrawal_amount,
        settings.max_withdrawal_amount,
    )
    if not check.valid:
        typer.echo(f"✗ {check.error}", err=True)
        raise typer.Exit(code=1)

    schedule = FeeSchedule.from_settings(settings)
    fees = calculate_swap_fees(credits_amount, schedule)

    typer.echo(f"Credits:        {fees.credits_amount}")
    typer.echo(f"Swap fee:       {fees.swap_fee}")
    typer.echo(f"Network fee:    {fees.network_fee}")
    typer.echo(f"Total fees:     {fees.total_fees} ({fees.fee_percentage}%)")
    typer.echo(f"Total charged:  {fees.total_required}")
    typer.echo(f"SOL paid out:   {fees.settlement_amount}")
    typer.echo("")
    typer.echo(describe_fees(fees, schedule))


@app.command()
def reconcile(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to .env configuration file",
    ),
    once: bool = typer.Option(
        False,
        "--once",
        help="Run one reconciliation cycle and exit",
    ),
) -> None:
    """
    Poll the bridge for stale bridging swaps and advance them.

    Requires DATABASE_URL: in-memory stores are empty in a fresh process.
    """
    from .orchestrator import build_orchestrator
    from .reconciler import StatusReconciler

    settings = _load_settings(config_path)
    if not settings.database_url:
        typer.echo("Warning: DATABASE_URL not set, nothing to reconcile in a fresh process.")

    orchestrator = build_orchestrator(settings)

    reconciler = StatusReconciler(
        orchestrator,
        interval_seconds=settings.reconcile_interval_seconds,
        stale_seconds=settings.reconcile_stale_seconds,
    )

    async def _run() -> None:
        try:
            if once:
                changed = await reconciler.run_once()
                for tx in changed:
                    typer.echo(f"✓ {tx.id}: {tx.status.value}")
                typer.echo(f"Refreshed {reconciler.state.refreshed} swaps, {len(changed)} changed")
            else:
                await reconciler.run()
        finally:
            await orchestrator.close()

    if not once:
        typer.echo("Running in continuous mode. Press Ctrl+C to stop.")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("\nStopping reconciler...")
        reconciler.stop()


@app.command()
def version() -> None:
    """Show the CreditSwap version."""
    from creditswap_api import __version__
    typer.echo(f"creditswap v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
