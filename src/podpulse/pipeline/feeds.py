"""
Podcast RSS Feeds

Parses podcast feeds and turns new feed items into pending episodes.
Subscriptions track only episodes published after the podcast was added;
older items are imported on request.
"""

import logging
from datetime import datetime
from typing import List, Optional

import feedparser
from pydantic import BaseModel

from ..config import settings
from ..db import Database
from ..models import Episode, EpisodeStatus, Podcast
from ..storage import BlobStore
from .control import PipelineControlPlane

logger = logging.getLogger(__name__)


class FeedItem(BaseModel):
    """An audio item from an RSS feed."""
    title: str
    guid: str
    audio_url: str
    published_at: datetime
    description: Optional[str] = None


class PodcastFeed(BaseModel):
    """A parsed podcast feed."""
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    items: List[FeedItem] = []


class PodcastNotFoundError(Exception):
    """Raised when a podcast id does not exist."""
    pass


def _audio_url(entry) -> Optional[str]:
    for link in entry.get("links", []):
        if link.get("type", "").startswith("audio/"):
            return link.get("href")

    # Fallback to enclosures list, typed or not
    enclosures = entry.get("enclosures", [])
    for enc in enclosures:
        if enc.get("type", "").startswith("audio/"):
            return enc.get("href")
    for enc in enclosures:
        if enc.get("href"):
            return enc.get("href")
    return None


def _published_at(entry) -> datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6])
    return datetime.utcnow()


def parse_feed(feed_source: str) -> PodcastFeed:
    """
    Parse a podcast RSS feed.

    Args:
        feed_source: Feed URL (or raw XML, which feedparser also accepts)

    Returns:
        PodcastFeed with every item that carries audio

    Raises:
        ValueError: If the feed could not be parsed at all
    """
    logger.info(f"Parsing podcast feed: {feed_source[:100]}")

    feed = feedparser.parse(feed_source)

    if feed.bozo:
        if not feed.entries and not feed.feed.get("title"):
            raise ValueError(f"Invalid feed: {feed.bozo_exception}")
        # feedparser often recovers from malformed XML
        logger.warning(f"Feed parsing warning: {feed.bozo_exception}")

    items = []
    for entry in feed.entries:
        audio_url = _audio_url(entry)
        if not audio_url:
            continue

        items.append(FeedItem(
            title=entry.get("title") or "Untitled",
            guid=str(entry.get("id") or audio_url),
            audio_url=audio_url,
            published_at=_published_at(entry),
            description=entry.get("description") or entry.get("summary"),
        ))

    image = feed.feed.get("image") or {}
    return PodcastFeed(
        title=feed.feed.get("title") or "Unknown Podcast",
        description=feed.feed.get("description") or feed.feed.get("subtitle"),
        image_url=image.get("href") or image.get("url"),
        items=items,
    )


def add_podcast(db: Database, feed_url: str) -> Podcast:
    """Subscribe to a feed. Existing subscriptions are returned unchanged."""
    existing = db.get_podcast_by_feed_url(feed_url)
    if existing is not None:
        logger.info(f"Already subscribed: {existing.title}")
        return existing

    feed = parse_feed(feed_url)
    podcast = Podcast(
        title=feed.title,
        feed_url=feed_url,
        image_url=feed.image_url,
        description=feed.description,
    )
    db.add_podcast(podcast)

    logger.info(f"Added podcast {podcast.title} ({len(feed.items)} items in feed)")
    return podcast


def remove_podcast(db: Database, blobs: BlobStore, podcast_id: str) -> int:
    """
    Delete a podcast with its episodes, their artifacts and stored audio.

    Returns:
        Number of episodes removed
    """
    episodes = db.delete_podcast(podcast_id)
    for episode in episodes:
        if not episode.blob_key:
            continue
        try:
            blobs.delete(episode.blob_key)
        except Exception as e:
            logger.warning(f"Could not delete blob {episode.blob_key}: {e}")

    logger.info(f"Removed podcast {podcast_id} and {len(episodes)} episodes")
    return len(episodes)


def _new_episode(podcast: Podcast, item: FeedItem) -> Episode:
    return Episode(
        podcast_id=podcast.id,
        title=item.title,
        guid=item.guid,
        audio_url=item.audio_url,
        published_at=item.published_at,
        status=EpisodeStatus.PENDING,
    )


def poll_feed(db: Database, control: PipelineControlPlane, podcast: Podcast) -> int:
    """
    Insert and trigger every new item published since the podcast was added.

    Returns:
        Number of episodes created
    """
    feed = parse_feed(podcast.feed_url)

    created = 0
    for item in feed.items:
        if item.published_at < podcast.added_at:
            continue
        if db.find_episode_by_guid(podcast.id, item.guid) is not None:
            continue

        episode = _new_episode(podcast, item)
        db.add_episode(episode)
        control.trigger(episode.id)
        created += 1

    db.update_podcast(podcast.id, last_polled_at=datetime.utcnow())
    return created


def poll_all_feeds(db: Database, control: PipelineControlPlane) -> int:
    """
    Poll every active podcast. A failing feed is logged and skipped.

    Returns:
        Total number of new episodes
    """
    total = 0
    for podcast in db.list_podcasts(active_only=True):
        try:
            created = poll_feed(db, control, podcast)
        except Exception as e:
            logger.error(f"Error polling feed {podcast.feed_url}: {e}")
            continue
        if created:
            logger.info(f"{podcast.title}: {created} new episodes")
        total += created

    return total


def import_past_episodes(db: Database, podcast_id: str, limit: Optional[int] = None) -> int:
    """
    Import recent episodes published before the podcast was added.

    Only the ``limit`` most recent feed items are considered. Imported
    episodes stay pending until triggered.

    Returns:
        Number of episodes imported
    """
    podcast = db.get_podcast(podcast_id)
    if podcast is None:
        raise PodcastNotFoundError(f"Podcast not found: {podcast_id}")

    limit = limit if limit is not None else settings.import_past_limit
    feed = parse_feed(podcast.feed_url)
    recent = sorted(feed.items, key=lambda i: i.published_at, reverse=True)[:limit]

    imported = 0
    for item in recent:
        if item.published_at >= podcast.added_at:
            continue
        if db.find_episode_by_guid(podcast.id, item.guid) is not None:
            continue

        db.add_episode(_new_episode(podcast, item))
        imported += 1

    logger.info(f"Imported {imported} past episodes for {podcast.title}")
    return imported
