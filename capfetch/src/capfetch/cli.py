import sys
import json
import asyncio
import logging
from typing import Optional

import click

from .config import ScraperSettings, get_blob_token, get_scraper_secret, load_settings
from .errors import format_error
from .export.blob import BlobUploader
from .export.snapshot import SnapshotStore
from .logging import configure_logging
from .pipeline.runner import Scraper, build_client
from .pipeline.universe import load_supplemental, resolve_universe
from .pipeline.updates import UpdateCategory
from .trigger import handle_trigger

__version__ = "0.4.0"

# Configure logging at module level
configure_logging()
logger = logging.getLogger(__name__)

CATEGORY_CHOICES = [c.value for c in UpdateCategory]


def _make_scraper(settings: ScraperSettings) -> Scraper:
    return Scraper(
        build_client(settings),
        SnapshotStore(settings.snapshot_path),
        supplemental=load_supplemental(settings.supplemental_path),
        settings=settings,
    )


def _make_uploader(no_upload: bool) -> Optional[BlobUploader]:
    if no_upload:
        return None
    token = get_blob_token()
    if not token:
        logger.info("BLOB_READ_WRITE_TOKEN not set; writing the local snapshot only")
        return None
    return BlobUploader(token)


@click.group()
def cli():
    """capfetch: global market-cap dataset builder."""
    pass


@cli.command()
@click.option("--only", type=click.Choice(CATEGORY_CHOICES), default=None, help="Update a single category of the existing snapshot")
@click.option("--out", default=None, help="Snapshot path (default: CAPFETCH_SNAPSHOT_PATH or data/companies.json)")
@click.option("--concurrency", type=int, default=None, help="Symbols fetched concurrently per batch")
@click.option("--no-upload", is_flag=True, help="Skip the blob upload even if a token is configured")
def scrape(only, out, concurrency, no_upload):
    """
    Build the dataset, or refresh one category of it with --only.
    Writes the snapshot locally and uploads it when a blob token is set.
    """
    settings = load_settings()
    updates = {}
    if out:
        updates["snapshot_path"] = out
    if concurrency is not None:
        if concurrency < 1:
            raise click.BadParameter("--concurrency must be >= 1.")
        updates["concurrency"] = concurrency
    settings = settings.model_copy(update=updates)

    scraper = _make_scraper(settings)
    snapshot, locations = asyncio.run(scraper.run_and_publish(only, _make_uploader(no_upload)))
    _print_json({
        "mode": only or "full",
        "companies": len(snapshot.companies),
        "locations": locations,
        "summary": scraper.summary.as_dict(),
    })


@cli.command()
@click.option("--token", envvar="SCRAPER_TRIGGER_TOKEN", default=None, help="Shared secret authorizing the run")
@click.option("--only", type=click.Choice(CATEGORY_CHOICES), default=None, help="Update a single category")
def trigger(token, only):
    """Run a scrape the way the scheduler does: authorized and time-boxed."""
    settings = load_settings()

    async def run():
        scraper = _make_scraper(settings)
        return await scraper.run_and_publish(only, _make_uploader(False))

    response = asyncio.run(handle_trigger(
        token,
        run,
        secret=get_scraper_secret(),
        timeout_s=settings.trigger_timeout_s,
    ))
    click.echo(json.dumps({"status": response.status, "body": response.body}, indent=2))
    if response.status != 200:
        sys.exit(1)


@cli.command()
def universe():
    """Print the resolved symbol universe (screener + supplemental)."""
    settings = load_settings()
    client = build_client(settings)
    supplemental = load_supplemental(settings.supplemental_path)
    store = SnapshotStore(settings.snapshot_path)
    symbols = asyncio.run(resolve_universe(client, supplemental, snapshot=store.load()))
    _print_json({"count": len(symbols), "symbols": symbols})


@cli.command()
def version():
    """Print version information."""
    data = {"version": __version__, "categories": CATEGORY_CHOICES}
    _print_json(data)


def _print_json(data, cached=False):
    """Helper to print standard JSON envelope."""
    payload = {
        "ok": True,
        "data": data,
        "meta": {
            "version": 1,
            "cached": cached
        }
    }
    click.echo(json.dumps(payload, indent=2))


def main():
    """Entry point for the CLI."""
    try:
        cli(standalone_mode=False)
    except Exception as e:
        if isinstance(e, click.exceptions.Exit):
            sys.exit(e.exit_code)
        if isinstance(e, click.exceptions.Abort):
            sys.exit(130)

        # Usage errors (bad option values) use the same JSON envelope
        print(format_error(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
