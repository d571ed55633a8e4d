"""
PracticeSync — Command Line Interface
=======================================

Operator and scheduler entry points. The periodic sweep is an external cron
job (every 15 minutes) running `practice-sync sweep`; there is no in-process
scheduler loop.

Example:
    practice-sync sweep
    practice-sync sync PR-1234
    practice-sync status PR-1234
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

import click

from practice_sync.config import settings
from practice_sync.database import create_engine_from_settings, create_session_factory, dispose_engine
from practice_sync.exceptions import PracticeSyncError
from practice_sync.main import setup_logging
from practice_sync.schemas.sync import ManualSyncResponse
from practice_sync.services.halaxy_client import HalaxyClient
from practice_sync.services.sync_service import SyncService


@asynccontextmanager
async def _sync_service() -> AsyncIterator[SyncService]:
    """Build the same object graph as the API lifespan, for one command."""
    engine = create_engine_from_settings(settings)
    remote = HalaxyClient(settings)
    try:
        yield SyncService.create(remote, create_session_factory(engine), settings)
    finally:
        await remote.aclose()
        await dispose_engine(engine)


def _print_summary(response: ManualSyncResponse) -> None:
    click.echo(response.message)
    for summary in response.practitioners:
        mark = "✓" if summary.success else "❌"
        click.echo(
            f"  {mark} {summary.name} ({summary.practitioner_id}): "
            f"{summary.records_processed} records in {summary.duration_ms}ms"
        )
        for error in summary.errors:
            click.echo(f"      - {error}")


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run")
def cli(log_level):
    """PracticeSync administration and scheduled sync."""
    setup_logging((log_level or settings.log_level).upper())


@cli.command()
def sweep():
    """
    Full sync of every active local practitioner.

    Falls back to HALAXY_PRACTITIONER_ID when the local store is empty.
    Exits 1 if any practitioner failed.
    """

    async def _run() -> ManualSyncResponse:
        async with _sync_service() as service:
            return await service.run_scheduled_sweep()

    response = asyncio.run(_run())
    _print_summary(response)
    if any(not s.success for s in response.practitioners):
        sys.exit(1)


@cli.command()
@click.argument("practitioner_id")
def sync(practitioner_id: str):
    """Full sync of one Halaxy practitioner (e.g. PR-1234)."""

    async def _run():
        async with _sync_service() as service:
            return await service.full_sync(practitioner_id)

    result = asyncio.run(_run())
    if result.status == "not_configured":
        click.echo("❌ Halaxy not configured: set HALAXY_CLIENT_ID and HALAXY_CLIENT_SECRET")
        sys.exit(2)

    click.echo(
        f"{'✓' if result.success else '❌'} {practitioner_id}: "
        f"{result.records_created} created, {result.records_updated} updated, "
        f"{result.records_deleted} deleted in {result.duration_ms}ms"
    )
    for error in result.errors:
        click.echo(f"  - {error.entity_type} {error.entity_id}: {error.message}")
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("practitioner_id")
def status(practitioner_id: str):
    """Sync health of one practitioner, by Halaxy id."""

    async def _run():
        async with _sync_service() as service:
            practitioner = await service.store.find_practitioner_by_remote_id(practitioner_id)
            if practitioner is None:
                return None
            return await service.sync_log.get_sync_status(practitioner.id)

    try:
        report = asyncio.run(_run())
    except PracticeSyncError as e:
        click.echo(f"❌ Error: {e.message}")
        sys.exit(1)

    if report is None:
        click.echo(f"❌ Practitioner not synced yet: {practitioner_id}")
        sys.exit(1)

    click.echo(f"Status: {report.status.value}")
    click.echo(f"  Last full sync:        {report.last_full_sync or 'never'}")
    click.echo(f"  Last incremental sync: {report.last_incremental_sync or 'never'}")
    if report.error_message:
        click.echo(f"  Last error: {report.error_message}")


if __name__ == "__main__":
    cli()
