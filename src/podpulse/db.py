"""
Podpulse Database Layer
LanceDB operations for podcasts, episodes, transcripts, analyses and the step log.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import lancedb
from lancedb.pydantic import LanceModel

from .config import settings
from .models import (
    Episode,
    EpisodeAnalysis,
    EpisodeStatus,
    Podcast,
    Theme,
    TranscriptSegment,
    WeeklyAnalysis,
    Word,
    new_id,
)

logger = logging.getLogger(__name__)

# LanceDB queries default to 10 rows; full scans need an explicit ceiling.
SCAN_LIMIT = 1_000_000


class EpisodeNotFoundError(Exception):
    """Raised when an episode id does not exist."""
    pass


class PodcastTable(LanceModel):
    """LanceDB table schema for podcasts."""

    id: str
    title: str
    feed_url: str
    image_url: Optional[str] = None
    description: Optional[str] = None
    added_at: str  # ISO format string
    last_polled_at: Optional[str] = None
    active: bool


class EpisodeTable(LanceModel):
    """LanceDB table schema for episodes."""

    id: str
    podcast_id: str
    title: str
    guid: str
    audio_url: str
    blob_key: Optional[str] = None
    published_at: str
    duration_seconds: Optional[int] = None
    status: str
    workflow_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str


class SegmentTable(LanceModel):
    """LanceDB table schema for transcript segments."""

    id: str
    episode_id: str
    segment_index: int
    text: str
    start_time: float
    end_time: float
    words_json: str  # JSON: [{word, start, end}]


class AnalysisTable(LanceModel):
    """LanceDB table schema for per-episode analyses."""

    id: str
    episode_id: str
    summary: str
    tags_json: str
    themes_json: str
    sentiment: str
    key_quotes_json: str
    created_at: str


class WeeklyAnalysisTable(LanceModel):
    """LanceDB table schema for weekly trend reports."""

    id: str
    week_start: str
    week_end: str
    analysis: str
    trending_topics_json: str
    episode_ids_json: str
    created_at: str


class StepLogTable(LanceModel):
    """Append-only log of completed pipeline steps, keyed by (run_id, step_name)."""

    run_id: str
    step_name: str
    output_json: str
    recorded_at: str


def _quote(value: str) -> str:
    """Quote a string literal for a LanceDB where clause."""
    return "'" + str(value).replace("'", "''") + "'"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Database wrapper for LanceDB operations."""

    TABLES = {
        "podcasts": PodcastTable,
        "episodes": EpisodeTable,
        "transcript_segments": SegmentTable,
        "episode_analyses": AnalysisTable,
        "weekly_analyses": WeeklyAnalysisTable,
        "step_log": StepLogTable,
    }

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or settings.lancedb_path
        self._db = None
        self._tables: Dict[str, Any] = {}

    def connect(self) -> "Database":
        """Connect to LanceDB."""
        self.db_path.mkdir(parents=True, exist_ok=True)
        self._db = lancedb.connect(str(self.db_path))
        return self

    @property
    def db(self):
        if self._db is None:
            self.connect()
        return self._db

    def _get_or_create_table(self, name: str, schema):
        """Get existing table or create new one."""
        if name in self.db.table_names():
            return self.db.open_table(name)
        return self.db.create_table(name, schema=schema)

    def table(self, name: str):
        if name not in self._tables:
            self._tables[name] = self._get_or_create_table(name, self.TABLES[name])
        return self._tables[name]

    def init_tables(self) -> None:
        """Create every table up front."""
        for name in self.TABLES:
            self.table(name)

    def _select(self, name: str, where: Optional[str] = None, limit: int = SCAN_LIMIT) -> List[dict]:
        query = self.table(name).search()
        if where:
            query = query.where(where)
        return query.limit(limit).to_list()

    # --- Podcast Operations ---

    def add_podcast(self, podcast: Podcast) -> None:
        record = PodcastTable(
            id=podcast.id,
            title=podcast.title,
            feed_url=podcast.feed_url,
            image_url=podcast.image_url,
            description=podcast.description,
            added_at=podcast.added_at.isoformat(),
            last_polled_at=_iso(podcast.last_polled_at),
            active=podcast.active,
        )
        self.table("podcasts").add([record.model_dump()])

    @staticmethod
    def _row_to_podcast(row: dict) -> Podcast:
        return Podcast(
            id=row["id"],
            title=row["title"],
            feed_url=row["feed_url"],
            image_url=row.get("image_url"),
            description=row.get("description"),
            added_at=datetime.fromisoformat(row["added_at"]),
            last_polled_at=_parse_dt(row.get("last_polled_at")),
            active=bool(row["active"]),
        )

    def get_podcast(self, podcast_id: str) -> Optional[Podcast]:
        rows = self._select("podcasts", f"id = {_quote(podcast_id)}", limit=1)
        return self._row_to_podcast(rows[0]) if rows else None

    def get_podcast_by_feed_url(self, feed_url: str) -> Optional[Podcast]:
        rows = self._select("podcasts", f"feed_url = {_quote(feed_url)}", limit=1)
        return self._row_to_podcast(rows[0]) if rows else None

    def list_podcasts(self, active_only: bool = False) -> List[Podcast]:
        where = "active = true" if active_only else None
        podcasts = [self._row_to_podcast(r) for r in self._select("podcasts", where)]
        return sorted(podcasts, key=lambda p: p.added_at, reverse=True)

    def update_podcast(self, podcast_id: str, **fields) -> None:
        values = {k: (_iso(v) if isinstance(v, datetime) else v) for k, v in fields.items()}
        self.table("podcasts").update(where=f"id = {_quote(podcast_id)}", values=values)

    def delete_podcast(self, podcast_id: str) -> List[Episode]:
        """Delete a podcast and everything its episodes own. Returns the removed episodes."""
        episodes = self.list_episodes(podcast_id=podcast_id)
        for episode in episodes:
            self.delete_episode_artifacts(episode.id)
        self.table("episodes").delete(f"podcast_id = {_quote(podcast_id)}")
        self.table("podcasts").delete(f"id = {_quote(podcast_id)}")
        return episodes

    # --- Episode Operations ---

    @staticmethod
    def _episode_record(episode: Episode) -> dict:
        return EpisodeTable(
            id=episode.id,
            podcast_id=episode.podcast_id,
            title=episode.title,
            guid=episode.guid,
            audio_url=episode.audio_url,
            blob_key=episode.blob_key,
            published_at=episode.published_at.isoformat(),
            duration_seconds=episode.duration_seconds,
            status=episode.status.value,
            workflow_id=episode.workflow_id,
            error_message=episode.error_message,
            created_at=episode.created_at.isoformat(),
        ).model_dump()

    @staticmethod
    def _row_to_episode(row: dict) -> Episode:
        return Episode(
            id=row["id"],
            podcast_id=row["podcast_id"],
            title=row["title"],
            guid=row["guid"],
            audio_url=row["audio_url"],
            blob_key=row.get("blob_key"),
            published_at=datetime.fromisoformat(row["published_at"]),
            duration_seconds=row.get("duration_seconds"),
            status=EpisodeStatus(row["status"]),
            workflow_id=row.get("workflow_id"),
            error_message=row.get("error_message"),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def add_episode(self, episode: Episode) -> None:
        self.table("episodes").add([self._episode_record(episode)])

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        rows = self._select("episodes", f"id = {_quote(episode_id)}", limit=1)
        return self._row_to_episode(rows[0]) if rows else None

    def require_episode(self, episode_id: str) -> Episode:
        episode = self.get_episode(episode_id)
        if episode is None:
            raise EpisodeNotFoundError(f"Episode not found: {episode_id}")
        return episode

    def find_episode_by_guid(self, podcast_id: str, guid: str) -> Optional[Episode]:
        rows = self._select(
            "episodes",
            f"podcast_id = {_quote(podcast_id)} AND guid = {_quote(guid)}",
            limit=1,
        )
        return self._row_to_episode(rows[0]) if rows else None

    def list_episodes(
        self,
        podcast_id: Optional[str] = None,
        statuses: Optional[List[EpisodeStatus]] = None,
        published_after: Optional[datetime] = None,
        published_before: Optional[datetime] = None,
    ) -> List[Episode]:
        """List episodes filtered by podcast, status and publish window, newest first."""
        clauses = []
        if podcast_id:
            clauses.append(f"podcast_id = {_quote(podcast_id)}")
        if statuses:
            clauses.append("status IN (" + ", ".join(_quote(s.value) for s in statuses) + ")")

        episodes = [
            self._row_to_episode(r)
            for r in self._select("episodes", " AND ".join(clauses) or None)
        ]
        if published_after is not None:
            episodes = [e for e in episodes if e.published_at >= published_after]
        if published_before is not None:
            episodes = [e for e in episodes if e.published_at <= published_before]

        return sorted(episodes, key=lambda e: e.published_at, reverse=True)

    def update_episode(self, episode_id: str, **fields) -> None:
        """Update the given columns of an episode. None clears a column."""
        values = {}
        for key, value in fields.items():
            if isinstance(value, EpisodeStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            values[key] = value
        self.table("episodes").update(where=f"id = {_quote(episode_id)}", values=values)

    def delete_episode_artifacts(self, episode_id: str) -> None:
        """Delete all segments and the analysis owned by an episode."""
        self.delete_segments(episode_id)
        self.table("episode_analyses").delete(f"episode_id = {_quote(episode_id)}")

    # --- Transcript Segments ---

    def replace_segments(self, episode_id: str, segments: List[TranscriptSegment]) -> None:
        """Store segments for an episode in index order, replacing any earlier set."""
        self.delete_segments(episode_id)
        if not segments:
            return

        records = [
            SegmentTable(
                id=new_id(),
                episode_id=episode_id,
                segment_index=index,
                text=segment.text,
                start_time=segment.start_time,
                end_time=segment.end_time,
                words_json=json.dumps([w.model_dump() for w in segment.words]),
            ).model_dump()
            for index, segment in enumerate(segments)
        ]
        self.table("transcript_segments").add(records)

    def get_segments(self, episode_id: str) -> List[TranscriptSegment]:
        rows = self._select("transcript_segments", f"episode_id = {_quote(episode_id)}")
        rows.sort(key=lambda r: r["segment_index"])
        return [
            TranscriptSegment(
                episode_id=r["episode_id"],
                segment_index=r["segment_index"],
                text=r["text"],
                start_time=r["start_time"],
                end_time=r["end_time"],
                words=[Word(**w) for w in json.loads(r["words_json"])],
            )
            for r in rows
        ]

    def delete_segments(self, episode_id: str) -> None:
        self.table("transcript_segments").delete(f"episode_id = {_quote(episode_id)}")

    # --- Episode Analyses ---

    def upsert_analysis(self, analysis: EpisodeAnalysis) -> None:
        """Store the analysis for an episode, replacing an existing one."""
        self.table("episode_analyses").delete(f"episode_id = {_quote(analysis.episode_id)}")
        record = AnalysisTable(
            id=analysis.id,
            episode_id=analysis.episode_id,
            summary=analysis.summary,
            tags_json=json.dumps(analysis.tags),
            themes_json=json.dumps([t.model_dump() for t in analysis.themes]),
            sentiment=analysis.sentiment,
            key_quotes_json=json.dumps(analysis.key_quotes),
            created_at=analysis.created_at.isoformat(),
        )
        self.table("episode_analyses").add([record.model_dump()])

    def get_analysis(self, episode_id: str) -> Optional[EpisodeAnalysis]:
        rows = self._select("episode_analyses", f"episode_id = {_quote(episode_id)}", limit=1)
        if not rows:
            return None

        row = rows[0]
        return EpisodeAnalysis(
            id=row["id"],
            episode_id=row["episode_id"],
            summary=row["summary"],
            tags=json.loads(row["tags_json"]),
            themes=[Theme(**t) for t in json.loads(row["themes_json"])],
            sentiment=row["sentiment"],
            key_quotes=json.loads(row["key_quotes_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # --- Weekly Analyses ---

    def add_weekly_analysis(self, weekly: WeeklyAnalysis) -> None:
        record = WeeklyAnalysisTable(
            id=weekly.id,
            week_start=weekly.week_start.isoformat(),
            week_end=weekly.week_end.isoformat(),
            analysis=weekly.analysis,
            trending_topics_json=json.dumps(weekly.trending_topics),
            episode_ids_json=json.dumps(weekly.episode_ids),
            created_at=weekly.created_at.isoformat(),
        )
        self.table("weekly_analyses").add([record.model_dump()])

    def latest_weekly_analysis(self) -> Optional[WeeklyAnalysis]:
        """Most recently created weekly report, if any."""
        rows = self._select("weekly_analyses")
        if not rows:
            return None

        row = max(rows, key=lambda r: datetime.fromisoformat(r["created_at"]))
        return WeeklyAnalysis(
            id=row["id"],
            week_start=datetime.fromisoformat(row["week_start"]),
            week_end=datetime.fromisoformat(row["week_end"]),
            analysis=row["analysis"],
            trending_topics=json.loads(row["trending_topics_json"]),
            episode_ids=json.loads(row["episode_ids_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # --- Step Log ---

    def get_step_output(self, run_id: str, step_name: str) -> Optional[str]:
        """Return the recorded JSON output of a step, or None if it never completed."""
        rows = self._select(
            "step_log",
            f"run_id = {_quote(run_id)} AND step_name = {_quote(step_name)}",
            limit=1,
        )
        return rows[0]["output_json"] if rows else None

    def record_step(self, run_id: str, step_name: str, output_json: str) -> None:
        record = StepLogTable(
            run_id=run_id,
            step_name=step_name,
            output_json=output_json,
            recorded_at=datetime.utcnow().isoformat(),
        )
        self.table("step_log").add([record.model_dump()])


# Global database instance
db = Database()
