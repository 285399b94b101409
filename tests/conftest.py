"""
Shared fixtures: a throwaway LanceDB database and fast test settings.
"""

from datetime import datetime

import pytest

from podpulse.config import Settings
from podpulse.db import Database
from podpulse.models import Episode, EpisodeStatus, Podcast


@pytest.fixture
def test_settings(tmp_path):
    """Settings with no retry delays and tiny transcription chunks."""
    return Settings(
        api_token="test-token",
        storage_path=tmp_path / "storage",
        lancedb_path=tmp_path / "lancedb",
        transcribe_chunk_bytes=4,
        download_max_retries=1,
        download_base_delay=0.0,
        transcribe_max_retries=1,
        transcribe_base_delay=0.0,
        analyze_max_retries=0,
        analyze_base_delay=0.0,
    )


@pytest.fixture
def database(test_settings):
    database = Database(test_settings.lancedb_path)
    database.init_tables()
    return database


@pytest.fixture
def podcast(database):
    podcast = Podcast(
        title="The Test Show",
        feed_url="https://example.com/feed.xml",
        added_at=datetime(2025, 1, 1),
    )
    database.add_podcast(podcast)
    return podcast


@pytest.fixture
def episode(database, podcast):
    episode = Episode(
        podcast_id=podcast.id,
        title="Episode One",
        guid="ep-1",
        audio_url="https://cdn.example.com/ep1.mp3",
        published_at=datetime(2025, 1, 10),
        status=EpisodeStatus.PENDING,
    )
    database.add_episode(episode)
    return episode
