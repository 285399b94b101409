"""
Pipeline Control Plane

Admin operations over episode runs: trigger, cancel, cancel-all, reset and
resume after a restart.
"""

import logging
import threading
import uuid
from typing import Optional

from ..config import Settings, settings
from ..db import Database
from ..models import EpisodeStatus
from ..storage import create_blob_store
from .episode import EpisodePipeline
from .runner import RunNotFoundError, ThreadJobRunner
from .services import SpeechToTextClient, TextGenerationClient

logger = logging.getLogger(__name__)


class PipelineAlreadyRunningError(Exception):
    """Raised when an episode already has an in-progress run."""
    pass


class PipelineControlPlane:
    """Start and stop episode pipeline runs."""

    def __init__(self, db: Database, runner: ThreadJobRunner):
        self.db = db
        self.runner = runner

    def trigger(self, episode_id: str) -> str:
        """
        Start a pipeline run for an episode.

        Returns:
            The new run id

        Raises:
            EpisodeNotFoundError: If the episode does not exist
            PipelineAlreadyRunningError: If a run is already in progress
        """
        episode = self.db.require_episode(episode_id)
        if episode.workflow_id and episode.status in EpisodeStatus.in_progress():
            raise PipelineAlreadyRunningError(
                f"Episode {episode_id} is already {episode.status.value} (run {episode.workflow_id})"
            )

        # Record the run before it starts so the run's own status writes win
        run_id = str(uuid.uuid4())
        self.db.update_episode(
            episode_id,
            workflow_id=run_id,
            status=EpisodeStatus.DOWNLOADING,
            error_message=None,
        )
        self.runner.create({"episode_id": episode_id}, run_id=run_id)

        logger.info(f"Triggered run {run_id[:8]} for episode {episode_id}")
        return run_id

    def _abort(self, run_id: Optional[str]) -> None:
        """Best-effort abort; unknown or finished runs are ignored."""
        if not run_id:
            return
        try:
            self.runner.get(run_id).abort()
        except RunNotFoundError:
            logger.debug(f"Run {run_id[:8]} not active, nothing to abort")

    def _reset_status(self, episode_id: str) -> None:
        self.db.update_episode(
            episode_id,
            status=EpisodeStatus.PENDING,
            workflow_id=None,
            error_message=None,
        )

    def cancel(self, episode_id: str) -> None:
        """Abort the episode's run and return it to pending. Artifacts are kept."""
        episode = self.db.require_episode(episode_id)
        self._abort(episode.workflow_id)
        self._reset_status(episode_id)
        logger.info(f"Cancelled episode {episode_id}")

    def cancel_all(self) -> int:
        """
        Cancel every in-progress episode.

        Returns:
            Number of episodes reset to pending
        """
        cancelled = 0
        for episode in self.db.list_episodes(statuses=EpisodeStatus.in_progress()):
            self._abort(episode.workflow_id)
            self._reset_status(episode.id)
            cancelled += 1

        logger.info(f"Cancelled {cancelled} in-progress episodes")
        return cancelled

    def reset(self, episode_id: str) -> None:
        """Delete the episode's segments and analysis and return it to pending."""
        episode = self.db.require_episode(episode_id)
        self._abort(episode.workflow_id)
        self.db.delete_episode_artifacts(episode_id)
        self._reset_status(episode_id)
        logger.info(f"Reset episode {episode_id}")

    def resume_interrupted(self) -> int:
        """
        Restart in-progress episodes that have no live run in this process.

        Runs restart under their recorded run id, so completed steps replay
        from the step log.
        """
        resumed = 0
        for episode in self.db.list_episodes(statuses=EpisodeStatus.in_progress()):
            if not episode.workflow_id or self.runner.is_running(episode.workflow_id):
                continue
            self.runner.create({"episode_id": episode.id}, run_id=episode.workflow_id)
            resumed += 1

        if resumed:
            logger.info(f"Resumed {resumed} interrupted runs")
        return resumed


def create_control_plane(db: Database, pipeline: EpisodePipeline) -> PipelineControlPlane:
    """Wire a control plane whose runs execute the given pipeline."""

    def _run(run_id: str, payload: dict, abort_event: threading.Event) -> None:
        pipeline.run(run_id, payload["episode_id"], abort_event)

    return PipelineControlPlane(db, ThreadJobRunner(_run))


def build_control_plane(db: Database, config: Optional[Settings] = None) -> PipelineControlPlane:
    """Build the pipeline and its collaborators from settings."""
    config = config or settings
    pipeline = EpisodePipeline(
        db=db,
        blobs=create_blob_store(config),
        speech=SpeechToTextClient(config),
        textgen=TextGenerationClient(config),
        config=config,
    )
    return create_control_plane(db, pipeline)
