"""
Podpulse Data Models
Pydantic models for podcasts, episodes, transcripts and analyses.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid4())


class EpisodeStatus(str, Enum):
    """
    Processing status of an episode.

    Moves forward PENDING -> DOWNLOADING -> TRANSCRIBING -> ANALYZING -> COMPLETE.
    ERROR is terminal until a retry or reset; cancel and reset force PENDING.
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"

    @classmethod
    def in_progress(cls) -> List["EpisodeStatus"]:
        return [cls.DOWNLOADING, cls.TRANSCRIBING, cls.ANALYZING]


class Podcast(BaseModel):
    """A subscribed podcast feed."""

    id: str = Field(default_factory=new_id)
    title: str
    feed_url: str = Field(description="RSS feed URL (unique)")
    image_url: Optional[str] = None
    description: Optional[str] = None
    added_at: datetime = Field(default_factory=datetime.utcnow)
    last_polled_at: Optional[datetime] = None
    active: bool = True


class Episode(BaseModel):
    """One podcast audio item tracked through the pipeline."""

    id: str = Field(default_factory=new_id)
    podcast_id: str
    title: str
    guid: str = Field(default="", description="Feed item identity for deduplication")
    audio_url: str
    blob_key: Optional[str] = Field(None, description="Set once the audio is stored")
    published_at: datetime
    duration_seconds: Optional[int] = Field(None, description="Set after transcription")
    status: EpisodeStatus = EpisodeStatus.PENDING
    workflow_id: Optional[str] = Field(None, description="Running pipeline instance")
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Word(BaseModel):
    """A word token with timestamps in seconds."""

    word: str
    start: float
    end: float


class TranscriptSegment(BaseModel):
    """A sentence-like slice of the transcript used for playback sync."""

    episode_id: str = ""
    segment_index: int = 0
    text: str
    start_time: float
    end_time: float
    words: List[Word] = Field(default_factory=list)


class Theme(BaseModel):
    theme: str
    description: str = ""


class EpisodeAnalysis(BaseModel):
    """AI analysis of a single episode. At most one per episode."""

    id: str = Field(default_factory=new_id)
    episode_id: str
    summary: str
    tags: List[str] = Field(default_factory=list)
    themes: List[Theme] = Field(default_factory=list)
    sentiment: str = ""
    key_quotes: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class WeeklyAnalysis(BaseModel):
    """Cached cross-episode trend report over a time window."""

    id: str = Field(default_factory=new_id)
    week_start: datetime
    week_end: datetime
    analysis: str = Field(description="Markdown report body")
    trending_topics: List[str] = Field(default_factory=list)
    episode_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class WeeklyAnalysisResult(BaseModel):
    """Result of a weekly report request."""

    weekly: WeeklyAnalysis
    episode_count: int
    from_cache: bool = False
