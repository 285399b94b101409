"""
Tests for RSS feed parsing, polling and past-episode import.
"""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from podpulse.models import Episode, EpisodeStatus, Podcast
from podpulse.pipeline.feeds import (
    FeedItem,
    PodcastFeed,
    PodcastNotFoundError,
    add_podcast,
    import_past_episodes,
    parse_feed,
    poll_all_feeds,
    remove_podcast,
)

FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">
  <channel>
    <title>Deep Talks</title>
    <description>Long conversations.</description>
    <itunes:image href="https://example.com/cover.jpg"/>
    <item>
      <title>Episode 2</title>
      <guid>ep-2</guid>
      <pubDate>Wed, 15 Jan 2025 08:00:00 GMT</pubDate>
      <enclosure url="https://cdn.example.com/ep2.mp3" type="audio/mpeg" length="1000"/>
    </item>
    <item>
      <title>Show notes only</title>
      <guid>notes</guid>
      <pubDate>Tue, 14 Jan 2025 08:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Episode 1</title>
      <pubDate>Mon, 06 Jan 2025 08:00:00 GMT</pubDate>
      <enclosure url="https://cdn.example.com/ep1.mp3" type="audio/mpeg" length="1000"/>
    </item>
  </channel>
</rss>
"""


def feed_item(guid, published_at):
    return FeedItem(
        title=f"Title {guid}",
        guid=guid,
        audio_url=f"https://cdn.example.com/{guid}.mp3",
        published_at=published_at,
    )


class TestParseFeed:
    def test_parses_channel_and_audio_items(self):
        feed = parse_feed(FEED_XML)

        assert feed.title == "Deep Talks"
        assert feed.description == "Long conversations."
        assert feed.image_url == "https://example.com/cover.jpg"
        assert [i.title for i in feed.items] == ["Episode 2", "Episode 1"]

    def test_item_fields(self):
        item = parse_feed(FEED_XML).items[0]
        assert item.guid == "ep-2"
        assert item.audio_url == "https://cdn.example.com/ep2.mp3"
        assert item.published_at == datetime(2025, 1, 15, 8, 0)

    def test_guid_defaults_to_audio_url(self):
        item = parse_feed(FEED_XML).items[1]
        assert item.guid == "https://cdn.example.com/ep1.mp3"


class TestAddPodcast:
    def test_adds_once(self, database):
        feed = PodcastFeed(title="Deep Talks", items=[])
        with patch("podpulse.pipeline.feeds.parse_feed", return_value=feed) as mock_parse:
            first = add_podcast(database, "https://example.com/rss")
            second = add_podcast(database, "https://example.com/rss")

        assert first.id == second.id
        assert mock_parse.call_count == 1
        assert database.get_podcast(first.id).title == "Deep Talks"


class TestPollAllFeeds:
    """Polling creates and triggers only new, post-subscription items."""

    def test_creates_and_triggers_new_items(self, database, podcast):
        database.add_episode(Episode(
            podcast_id=podcast.id,
            title="Known",
            guid="known",
            audio_url="https://cdn.example.com/known.mp3",
            published_at=datetime(2025, 1, 3),
        ))
        feed = PodcastFeed(title="The Test Show", items=[
            feed_item("new", datetime(2025, 1, 5)),
            feed_item("known", datetime(2025, 1, 3)),
            feed_item("before-subscribe", datetime(2024, 12, 1)),
        ])
        control = MagicMock()

        with patch("podpulse.pipeline.feeds.parse_feed", return_value=feed):
            created = poll_all_feeds(database, control)

        assert created == 1
        new_episode = database.find_episode_by_guid(podcast.id, "new")
        assert new_episode is not None
        control.trigger.assert_called_once_with(new_episode.id)
        assert database.find_episode_by_guid(podcast.id, "before-subscribe") is None
        assert database.get_podcast(podcast.id).last_polled_at is not None

    def test_second_poll_creates_nothing(self, database, podcast):
        feed = PodcastFeed(title="The Test Show", items=[feed_item("new", datetime(2025, 1, 5))])
        control = MagicMock()

        with patch("podpulse.pipeline.feeds.parse_feed", return_value=feed):
            poll_all_feeds(database, control)
            assert poll_all_feeds(database, control) == 0

        assert control.trigger.call_count == 1

    def test_failing_feed_does_not_stop_others(self, database, podcast):
        other = Podcast(title="Other", feed_url="https://other.example.com/rss", added_at=datetime(2025, 1, 1))
        database.add_podcast(other)

        def fake_parse(url):
            if url == podcast.feed_url:
                raise ValueError("Invalid feed")
            return PodcastFeed(title="Other", items=[feed_item("o-1", datetime(2025, 2, 1))])

        with patch("podpulse.pipeline.feeds.parse_feed", side_effect=fake_parse):
            created = poll_all_feeds(database, MagicMock())

        assert created == 1
        assert database.find_episode_by_guid(other.id, "o-1") is not None

    def test_inactive_podcasts_skipped(self, database, podcast):
        database.update_podcast(podcast.id, active=False)
        with patch("podpulse.pipeline.feeds.parse_feed") as mock_parse:
            assert poll_all_feeds(database, MagicMock()) == 0
        mock_parse.assert_not_called()


class TestImportPastEpisodes:
    def test_imports_recent_items_before_subscription(self, database, podcast):
        items = [feed_item(f"old-{d}", datetime(2024, 12, d)) for d in range(1, 8)]
        items.append(feed_item("after", datetime(2025, 1, 2)))
        feed = PodcastFeed(title="The Test Show", items=items)

        with patch("podpulse.pipeline.feeds.parse_feed", return_value=feed):
            imported = import_past_episodes(database, podcast.id, limit=5)

        # The five most recent include one published after subscribing
        assert imported == 4
        guids = {e.guid for e in database.list_episodes(podcast_id=podcast.id)}
        assert guids == {"old-7", "old-6", "old-5", "old-4"}
        assert all(e.status == EpisodeStatus.PENDING for e in database.list_episodes(podcast_id=podcast.id))

    def test_unknown_podcast(self, database):
        with pytest.raises(PodcastNotFoundError):
            import_past_episodes(database, "missing")


class TestRemovePodcast:
    def test_cascades(self, database, podcast, episode):
        database.update_episode(episode.id, blob_key="podcasts/p/episodes/e.mp3")
        blobs = MagicMock()

        removed = remove_podcast(database, blobs, podcast.id)

        assert removed == 1
        blobs.delete.assert_called_once_with("podcasts/p/episodes/e.mp3")
        assert database.get_podcast(podcast.id) is None
        assert database.get_episode(episode.id) is None

    def test_blob_errors_ignored(self, database, podcast, episode):
        database.update_episode(episode.id, blob_key="k")
        blobs = MagicMock()
        blobs.delete.side_effect = OSError("gone")

        assert remove_podcast(database, blobs, podcast.id) == 1
        assert database.get_episode(episode.id) is None
