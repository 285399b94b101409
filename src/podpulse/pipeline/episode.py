"""
Episode Processing Pipeline

Drives one episode through download -> chunked transcription -> segment
storage -> analysis -> completion. Every stage is a memoized step, so a run
restarted under the same run id resumes after its last completed step.
"""

import logging
import threading
import time
from typing import Any, Callable, Iterator, List, Optional

import httpx

from ..config import Settings, settings
from ..db import Database
from ..models import EpisodeAnalysis, EpisodeStatus
from ..storage import BlobStore
from .analysis import ANALYSIS_SYSTEM_PROMPT, build_analysis_prompt, parse_analysis_result
from .chunker import ByteChunk, plan_chunks
from .segmenter import segment
from .services import SpeechToTextClient, TextGenerationClient
from .steps import PermanentStepError, RunAborted, StepExecutor, StepPolicy
from .transcription import merge_chunk_words, segments_from_text, transcribe_chunk

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    """Raised when the source audio URL returns a non-2xx response."""
    pass


def blob_key_for(podcast_id: str, episode_id: str) -> str:
    """Deterministic blob key for an episode's audio."""
    return f"podcasts/{podcast_id}/episodes/{episode_id}.mp3"


class EpisodePipeline:
    """
    Episode state machine on top of the step executor.

    Collaborators are injected; nothing is read from globals except the
    default settings.
    """

    def __init__(
        self,
        db: Database,
        blobs: BlobStore,
        speech: SpeechToTextClient,
        textgen: TextGenerationClient,
        config: Optional[Settings] = None,
        executor: Optional[StepExecutor] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.db = db
        self.blobs = blobs
        self.speech = speech
        self.textgen = textgen
        self.config = config or settings
        self.executor = executor or StepExecutor(db)
        self._http_client = http_client

        cfg = self.config
        self.download_policy = StepPolicy(
            max_retries=cfg.download_max_retries,
            base_delay=cfg.download_base_delay,
            backoff_multiplier=cfg.step_backoff_multiplier,
            timeout=cfg.download_timeout,
        )
        self.transcribe_policy = StepPolicy(
            max_retries=cfg.transcribe_max_retries,
            base_delay=cfg.transcribe_base_delay,
            backoff_multiplier=cfg.step_backoff_multiplier,
            timeout=cfg.transcribe_timeout,
        )
        self.analyze_policy = StepPolicy(
            max_retries=cfg.analyze_max_retries,
            base_delay=cfg.analyze_base_delay,
            backoff_multiplier=cfg.step_backoff_multiplier,
            timeout=cfg.analyze_timeout,
        )

    def run(
        self,
        run_id: str,
        episode_id: str,
        abort_event: Optional[threading.Event] = None,
    ) -> Optional[EpisodeStatus]:
        """
        Run (or resume) the pipeline for an episode.

        Never raises: step failures become ``status=error`` with the message.
        An aborted run leaves the status to whoever aborted it.

        Returns:
            Final status, or None if the run was aborted
        """
        logger.info(f"[{run_id[:8]}] Pipeline started for episode {episode_id}")
        try:
            self._run_steps(run_id, episode_id, abort_event)
        except RunAborted as e:
            logger.info(f"[{run_id[:8]}] {e}")
            return None
        except Exception as e:
            logger.error(f"[{run_id[:8]}] Pipeline failed for episode {episode_id}: {e}")
            self.db.update_episode(episode_id, status=EpisodeStatus.ERROR, error_message=str(e))
            return EpisodeStatus.ERROR

        logger.info(f"[{run_id[:8]}] Pipeline completed for episode {episode_id}")
        return EpisodeStatus.COMPLETE

    def _run_steps(self, run_id: str, episode_id: str, abort_event: Optional[threading.Event]):
        episode = self.db.require_episode(episode_id)

        def step(name: str, action: Callable[[], Any], policy: Optional[StepPolicy] = None) -> Any:
            return self.executor.run(run_id, name, action, policy, abort_event)

        # Step 1: download audio into the blob store
        blob_key = step(
            "download-audio",
            lambda: self._download(episode.id, episode.podcast_id, episode.audio_url),
            self.download_policy,
        )

        # Step 2: transcribe chunk by chunk, never in parallel
        step("update-status-transcribing", lambda: self._set_status(episode_id, EpisodeStatus.TRANSCRIBING))
        ranges = step("plan-chunks", lambda: self._plan(blob_key))

        chunk_results: List[dict] = []
        for index, (start, end) in enumerate(ranges):
            chunk = ByteChunk(index, start, end)
            chunk_results.append(
                step(
                    f"transcribe-chunk-{index}",
                    lambda chunk=chunk: transcribe_chunk(
                        self.blobs,
                        blob_key,
                        chunk,
                        self.speech,
                        language=self.config.transcription_language,
                    ),
                    self.transcribe_policy,
                )
            )

        # Step 3: segment and store the transcript
        transcript = step("store-transcript", lambda: self._store_transcript(episode_id, chunk_results))

        # Step 4: analyze
        step("update-status-analyzing", lambda: self._set_status(episode_id, EpisodeStatus.ANALYZING))
        analysis = step(
            "analyze-transcript",
            lambda: self._analyze(episode_id, transcript),
            self.analyze_policy,
        )

        # Step 5: store analysis and complete
        step("store-analysis", lambda: self._store_analysis(episode_id, analysis))

    # --- Step actions ---

    def _set_status(self, episode_id: str, status: EpisodeStatus) -> str:
        self.db.update_episode(episode_id, status=status)
        return status.value

    def _download(self, episode_id: str, podcast_id: str, audio_url: str) -> str:
        self.db.update_episode(episode_id, status=EpisodeStatus.DOWNLOADING)
        key = blob_key_for(podcast_id, episode_id)

        # Stores only expose complete blobs, so an existing key is a finished download
        if self.blobs.head(key) is not None:
            logger.info(f"Audio already stored at {key}, skipping download")
        else:
            logger.info(f"Downloading {audio_url} -> {key}")
            if self._http_client is not None:
                self._stream_to_blob(self._http_client, audio_url, key)
            else:
                with httpx.Client(timeout=self.config.download_timeout, follow_redirects=True) as client:
                    self._stream_to_blob(client, audio_url, key)

        self.db.update_episode(episode_id, blob_key=key)
        return key

    def _stream_to_blob(self, client: httpx.Client, url: str, key: str) -> None:
        with client.stream("GET", url, follow_redirects=True) as response:
            if not response.is_success:
                raise DownloadError(f"Download failed: {response.status_code}")
            written = self.blobs.put(key, self._bounded(response.iter_bytes()))
        logger.info(f"Stored {written} bytes at {key}")

    def _bounded(self, chunks: Iterator[bytes]) -> Iterator[bytes]:
        """Stop a download that runs past download_timeout in total."""
        limit = self.config.download_timeout
        deadline = time.monotonic() + limit
        for chunk in chunks:
            if time.monotonic() > deadline:
                raise DownloadError(f"Download exceeded {limit:.0f}s")
            yield chunk

    def _plan(self, blob_key: str) -> List[List[int]]:
        size = self.blobs.head(blob_key)
        if size is None:
            raise PermanentStepError(f"Audio not found in blob store: {blob_key}")
        chunks = plan_chunks(size, self.config.transcribe_chunk_bytes)
        return [[c.start, c.end] for c in chunks]

    def _store_transcript(self, episode_id: str, chunk_results: List[dict]) -> str:
        words, total_duration = merge_chunk_words(chunk_results)
        if words:
            segments = segment(words, self.config.segment_target_words)
        else:
            logger.warning(f"No word timings for episode {episode_id}, estimating from text")
            segments = segments_from_text(chunk_results)

        text = " ".join(r["text"].strip() for r in chunk_results if r["text"].strip())
        if not text:
            text = " ".join(s.text for s in segments)
        if not text.strip():
            raise PermanentStepError("Transcription returned empty result")

        self.db.replace_segments(episode_id, segments)
        self.db.update_episode(episode_id, duration_seconds=int(round(total_duration)))
        logger.info(
            f"Stored {len(segments)} segments for episode {episode_id} ({total_duration:.0f}s)"
        )
        return text

    def _analyze(self, episode_id: str, transcript: str) -> dict:
        prompt = build_analysis_prompt(transcript, self.config.analysis_max_chars)
        response = self.textgen.complete(ANALYSIS_SYSTEM_PROMPT, prompt)
        analysis = parse_analysis_result(response, episode_id, self.config.analysis_fallback_chars)
        return analysis.model_dump(mode="json")

    def _store_analysis(self, episode_id: str, analysis: dict) -> bool:
        self.db.upsert_analysis(EpisodeAnalysis(**analysis))
        self.db.update_episode(episode_id, status=EpisodeStatus.COMPLETE, error_message=None)
        return True
