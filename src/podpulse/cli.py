"""
Podpulse CLI
Command-line interface for common operations.
"""

import logging

import click

from .models import EpisodeStatus


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """Podpulse - podcast transcription and analysis"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command("init-db")
def init_db():
    """Create storage directories and database tables."""
    from .config import settings
    from .db import db

    settings.ensure_directories()
    db.init_tables()
    click.echo(f"✅ Database ready at {settings.lancedb_path}")


@cli.command()
def token():
    """Print the current API token."""
    from .config import settings
    click.echo(f"API Token: {settings.api_token}")


@cli.command("serve")
def serve():
    """Start the admin API server."""
    from .config import settings
    from .main import run_server

    settings.ensure_directories()
    click.echo(f"🎙️  Starting Podpulse API on {settings.api_host}:{settings.api_port}")
    click.echo(f"🔑 API Token: {settings.api_token[:16]}...")
    run_server()


# =============================================================================
# Podcast Commands
# =============================================================================

@cli.command("add-podcast")
@click.argument("feed_url")
@click.option("--import-past", "import_past", type=int, default=0, help="Also import N past episodes")
def add_podcast_cmd(feed_url: str, import_past: int):
    """Subscribe to a podcast RSS feed."""
    from .db import db
    from .pipeline.feeds import add_podcast, import_past_episodes

    click.echo(f"📡 Fetching feed: {feed_url}...")
    try:
        podcast = add_podcast(db, feed_url)
    except ValueError as e:
        click.echo(f"❌ Failed to add feed: {e}")
        raise SystemExit(1)

    click.echo(f"✅ {podcast.title} (ID: {podcast.id[:8]})")
    if import_past:
        count = import_past_episodes(db, podcast.id, import_past)
        click.echo(f"   Imported {count} past episodes as pending")


@cli.command("remove-podcast")
@click.argument("podcast_id")
def remove_podcast_cmd(podcast_id: str):
    """Remove a podcast and everything it owns."""
    from .config import settings
    from .db import db
    from .pipeline.feeds import remove_podcast
    from .storage import create_blob_store

    if db.get_podcast(podcast_id) is None:
        click.echo("❌ Podcast not found")
        raise SystemExit(1)

    removed = remove_podcast(db, create_blob_store(settings), podcast_id)
    click.echo(f"🗑️  Removed podcast and {removed} episodes")


@cli.command("podcasts")
def list_podcasts():
    """List subscribed podcasts."""
    from .db import db

    podcasts = db.list_podcasts()
    if not podcasts:
        click.echo("No podcasts yet. Add one with: podpulse add-podcast FEED_URL")
        return

    for p in podcasts:
        polled = p.last_polled_at.strftime("%Y-%m-%d %H:%M") if p.last_polled_at else "never"
        click.echo(f"{p.id[:8]}  {p.title}  (last polled: {polled})")


@cli.command()
@click.option("--wait/--no-wait", default=True, help="Wait for triggered runs to finish")
def poll(wait: bool):
    """Poll all active feeds and process new episodes."""
    from .config import settings
    from .db import db
    from .pipeline.control import build_control_plane
    from .pipeline.feeds import poll_all_feeds

    control = build_control_plane(db, settings)
    created = poll_all_feeds(db, control)
    click.echo(f"📡 {created} new episodes")

    if wait and created:
        click.echo("⏳ Waiting for runs to finish...")
        control.runner.join_all()


# =============================================================================
# Episode Commands
# =============================================================================

@cli.command()
@click.argument("episode_id")
def process(episode_id: str):
    """Run the processing pipeline for an episode in the foreground."""
    from .config import settings
    from .db import EpisodeNotFoundError, db
    from .pipeline.control import PipelineAlreadyRunningError, build_control_plane

    control = build_control_plane(db, settings)
    try:
        run_id = control.trigger(episode_id)
    except EpisodeNotFoundError:
        click.echo("❌ Episode not found")
        raise SystemExit(1)
    except PipelineAlreadyRunningError as e:
        click.echo(f"⚠️  {e}")
        raise SystemExit(1)

    click.echo(f"▶️  Run {run_id[:8]} started")
    control.runner.join_all()

    episode = db.require_episode(episode_id)
    if episode.error_message:
        click.echo(f"❌ {episode.status.value}: {episode.error_message}")
    else:
        click.echo(f"✅ {episode.status.value}")


@cli.command()
def resume():
    """Resume runs interrupted by a restart and wait for them."""
    from .config import settings
    from .db import db
    from .pipeline.control import build_control_plane

    control = build_control_plane(db, settings)
    count = control.resume_interrupted()
    click.echo(f"▶️  Resumed {count} runs")
    control.runner.join_all()


@cli.command("cancel-all")
def cancel_all():
    """Reset every in-progress episode to pending."""
    from .config import settings
    from .db import db
    from .pipeline.control import build_control_plane

    count = build_control_plane(db, settings).cancel_all()
    click.echo(f"⏹️  Cancelled {count} episodes")


@cli.command()
@click.argument("episode_id")
def reset(episode_id: str):
    """Delete an episode's transcript and analysis and mark it pending."""
    from .config import settings
    from .db import EpisodeNotFoundError, db
    from .pipeline.control import build_control_plane

    try:
        build_control_plane(db, settings).reset(episode_id)
    except EpisodeNotFoundError:
        click.echo("❌ Episode not found")
        raise SystemExit(1)
    click.echo("🔄 Episode reset to pending")


@cli.command()
@click.option("--podcast", "podcast_id", help="Only this podcast")
@click.option("--status", type=click.Choice([s.value for s in EpisodeStatus]))
def episodes(podcast_id: str, status: str):
    """List episodes, newest first."""
    from .db import db

    statuses = [EpisodeStatus(status)] if status else None
    for e in db.list_episodes(podcast_id=podcast_id, statuses=statuses):
        click.echo(f"{e.id[:8]}  {e.published_at:%Y-%m-%d}  [{e.status.value:>12}]  {e.title}")
        if e.error_message:
            click.echo(f"          ⚠️  {e.error_message}")


# =============================================================================
# Weekly Report
# =============================================================================

@cli.command()
@click.option("--force", is_flag=True, help="Ignore the cached report")
def weekly(force: bool):
    """Generate (or show the cached) weekly trend report."""
    from .config import settings
    from .db import db
    from .pipeline.services import TextGenerationClient
    from .pipeline.weekly import NothingToAnalyzeError, WeeklyAggregator

    aggregator = WeeklyAggregator(db, TextGenerationClient(settings), settings)
    try:
        result = aggregator.generate(force_refresh=force)
    except NothingToAnalyzeError as e:
        click.echo(f"ℹ️  {e}")
        return

    source = "cached" if result.from_cache else "new"
    click.echo(f"📈 Weekly report ({source}, {result.episode_count} episodes)")
    click.echo("=" * 40)
    click.echo(result.weekly.analysis)
    if result.weekly.trending_topics:
        click.echo(f"\nTrending: {', '.join(result.weekly.trending_topics)}")


def main():
    cli()


if __name__ == "__main__":
    main()
