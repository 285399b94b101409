"""
Weekly Trend Aggregator

Builds a cross-show trend report from the completed episode analyses of the
past window, cached so repeated requests within the cache window make no
text-generation call.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..config import Settings, settings
from ..db import Database
from ..models import EpisodeStatus, WeeklyAnalysis, WeeklyAnalysisResult
from .analysis import WEEKLY_ANALYSIS_SYSTEM_PROMPT, build_weekly_prompt, parse_weekly_analysis
from .services import TextGenerationClient

logger = logging.getLogger(__name__)


class NothingToAnalyzeError(Exception):
    """Raised when no completed, analyzed episodes fall inside the window."""
    pass


class WeeklyAggregator:
    """Generate and cache weekly trend reports."""

    def __init__(
        self,
        db: Database,
        textgen: TextGenerationClient,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.textgen = textgen
        self.config = config or settings

    def latest(self) -> Optional[WeeklyAnalysis]:
        """Most recent report, if one exists."""
        return self.db.latest_weekly_analysis()

    def generate(
        self,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> WeeklyAnalysisResult:
        """
        Return the weekly report, generating a new one when the cache is stale.

        Args:
            force_refresh: Ignore a fresh cached report
            now: Reference time (defaults to utcnow)

        Raises:
            NothingToAnalyzeError: If the window has no analyzed episodes
        """
        now = now or datetime.utcnow()
        week_start = now - timedelta(days=self.config.weekly_window_days)

        if not force_refresh:
            cached = self.latest()
            cache_cutoff = now - timedelta(hours=self.config.weekly_cache_hours)
            if cached is not None and cached.created_at > cache_cutoff:
                logger.info(f"Returning cached weekly analysis from {cached.created_at.isoformat()}")
                return WeeklyAnalysisResult(
                    weekly=cached,
                    episode_count=len(cached.episode_ids),
                    from_cache=True,
                )

        entries = []
        episode_ids = []
        podcast_titles = {}
        for episode in self.db.list_episodes(
            statuses=[EpisodeStatus.COMPLETE],
            published_after=week_start,
            published_before=now,
        ):
            analysis = self.db.get_analysis(episode.id)
            if analysis is None:
                continue

            if episode.podcast_id not in podcast_titles:
                podcast = self.db.get_podcast(episode.podcast_id)
                podcast_titles[episode.podcast_id] = podcast.title if podcast else "Unknown Podcast"

            entries.append({
                "podcast_title": podcast_titles[episode.podcast_id],
                "episode_title": episode.title,
                "summary": analysis.summary,
                "tags": analysis.tags,
                "themes": analysis.themes,
            })
            episode_ids.append(episode.id)

        if not entries:
            raise NothingToAnalyzeError("No analyzed episodes found in the past week")

        logger.info(f"Generating weekly analysis over {len(entries)} episodes")
        response = self.textgen.complete(WEEKLY_ANALYSIS_SYSTEM_PROMPT, build_weekly_prompt(entries))
        analysis_text, topics = parse_weekly_analysis(response)

        weekly = WeeklyAnalysis(
            week_start=week_start,
            week_end=now,
            analysis=analysis_text,
            trending_topics=topics,
            episode_ids=episode_ids,
            created_at=now,
        )
        self.db.add_weekly_analysis(weekly)

        return WeeklyAnalysisResult(
            weekly=weekly,
            episode_count=len(entries),
            from_cache=False,
        )
