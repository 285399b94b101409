"""
Tests for the pipeline control plane and the thread job runner.
"""

import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from podpulse.db import EpisodeNotFoundError
from podpulse.models import Episode, EpisodeAnalysis, EpisodeStatus, TranscriptSegment
from podpulse.pipeline.control import (
    PipelineAlreadyRunningError,
    PipelineControlPlane,
    create_control_plane,
)
from podpulse.pipeline.runner import RunNotFoundError, ThreadJobRunner


@pytest.fixture
def runner():
    return MagicMock()


@pytest.fixture
def control(database, runner):
    return PipelineControlPlane(database, runner)


def add_episode(database, podcast, status, workflow_id=None, guid="g"):
    episode = Episode(
        podcast_id=podcast.id,
        title=f"Episode {guid}",
        guid=guid,
        audio_url=f"https://cdn.example.com/{guid}.mp3",
        published_at=datetime(2025, 2, 1),
        status=status,
        workflow_id=workflow_id,
    )
    database.add_episode(episode)
    return episode


class TestTrigger:
    def test_records_run_and_status(self, control, runner, database, episode):
        run_id = control.trigger(episode.id)

        stored = database.get_episode(episode.id)
        assert stored.workflow_id == run_id
        assert stored.status == EpisodeStatus.DOWNLOADING
        runner.create.assert_called_once_with({"episode_id": episode.id}, run_id=run_id)

    def test_unknown_episode(self, control, runner):
        with pytest.raises(EpisodeNotFoundError):
            control.trigger("missing")
        runner.create.assert_not_called()

    def test_duplicate_trigger_rejected(self, control, runner, episode):
        """A second trigger while the first is in progress starts nothing."""
        control.trigger(episode.id)

        with pytest.raises(PipelineAlreadyRunningError):
            control.trigger(episode.id)

        assert runner.create.call_count == 1

    def test_retrigger_after_error(self, control, runner, database, podcast):
        episode = add_episode(database, podcast, EpisodeStatus.ERROR, workflow_id="old-run")
        database.update_episode(episode.id, error_message="boom")

        run_id = control.trigger(episode.id)

        stored = database.get_episode(episode.id)
        assert run_id != "old-run"
        assert stored.error_message is None
        assert stored.status == EpisodeStatus.DOWNLOADING


class TestCancel:
    def test_cancel_aborts_and_resets(self, control, runner, database, podcast):
        episode = add_episode(database, podcast, EpisodeStatus.TRANSCRIBING, workflow_id="run-1")
        database.replace_segments(episode.id, [TranscriptSegment(text="kept", start_time=0, end_time=1)])

        control.cancel(episode.id)

        runner.get.assert_called_once_with("run-1")
        runner.get.return_value.abort.assert_called_once()
        stored = database.get_episode(episode.id)
        assert stored.status == EpisodeStatus.PENDING
        assert stored.workflow_id is None
        assert len(database.get_segments(episode.id)) == 1

    def test_cancel_unknown_run_still_resets(self, control, runner, database, podcast):
        runner.get.side_effect = RunNotFoundError("gone")
        episode = add_episode(database, podcast, EpisodeStatus.ANALYZING, workflow_id="run-1")

        control.cancel(episode.id)

        assert database.get_episode(episode.id).status == EpisodeStatus.PENDING

    def test_cancel_all(self, control, runner, database, podcast):
        for i, status in enumerate(EpisodeStatus.in_progress()):
            add_episode(database, podcast, status, workflow_id=f"run-{i}", guid=f"g{i}")
        done = add_episode(database, podcast, EpisodeStatus.COMPLETE, workflow_id="run-done", guid="done")
        runner.get.side_effect = [MagicMock(), RunNotFoundError("gone"), MagicMock()]

        count = control.cancel_all()

        assert count == 3
        remaining = database.list_episodes(statuses=EpisodeStatus.in_progress())
        assert remaining == []
        assert database.get_episode(done.id).status == EpisodeStatus.COMPLETE

    def test_cancel_all_nothing_running(self, control):
        assert control.cancel_all() == 0


class TestReset:
    def test_reset_deletes_artifacts(self, control, database, podcast):
        episode = add_episode(database, podcast, EpisodeStatus.ERROR, workflow_id="run-1")
        database.update_episode(episode.id, error_message="failed")
        database.replace_segments(episode.id, [TranscriptSegment(text="x", start_time=0, end_time=1)])
        database.upsert_analysis(EpisodeAnalysis(episode_id=episode.id, summary="s"))

        control.reset(episode.id)

        stored = database.get_episode(episode.id)
        assert stored.status == EpisodeStatus.PENDING
        assert stored.workflow_id is None
        assert stored.error_message is None
        assert database.get_segments(episode.id) == []
        assert database.get_analysis(episode.id) is None

    def test_reset_unknown(self, control):
        with pytest.raises(EpisodeNotFoundError):
            control.reset("missing")


class TestResume:
    def test_resumes_runs_without_live_thread(self, control, runner, database, podcast):
        stale = add_episode(database, podcast, EpisodeStatus.TRANSCRIBING, workflow_id="run-stale", guid="a")
        add_episode(database, podcast, EpisodeStatus.ANALYZING, workflow_id="run-live", guid="b")
        add_episode(database, podcast, EpisodeStatus.PENDING, guid="c")
        runner.is_running.side_effect = lambda run_id: run_id == "run-live"

        assert control.resume_interrupted() == 1
        runner.create.assert_called_once_with({"episode_id": stale.id}, run_id="run-stale")


class TestThreadJobRunner:
    def test_runs_target_on_thread(self):
        started = threading.Event()
        release = threading.Event()
        target = MagicMock(side_effect=lambda *args: (started.set(), release.wait(timeout=5)))
        runner = ThreadJobRunner(target)

        run_id = runner.create({"episode_id": "e"})
        started.wait(timeout=5)
        handle = runner.get(run_id)
        assert handle.status == "running"
        release.set()
        handle.join(timeout=5)

        args = target.call_args.args
        assert args[0] == run_id
        assert args[1] == {"episode_id": "e"}
        assert isinstance(args[2], threading.Event)
        assert handle.status == "finished"

    def test_finished_runs_are_released(self):
        """Handles are dropped once their thread ends, so a long-lived runner does not grow."""
        def target(run_id, payload, abort_event):
            if payload["n"] % 2:
                raise RuntimeError("crash")

        runner = ThreadJobRunner(target)

        run_ids = [runner.create({"n": n}) for n in range(10)]
        runner.join_all(timeout=5)

        assert runner._runs == {}
        for run_id in run_ids:
            assert runner.is_running(run_id) is False
            with pytest.raises(RunNotFoundError):
                runner.get(run_id)

    def test_resumed_run_keeps_its_handle(self):
        """An old thread ending does not drop a newer run started under the same id."""
        first_release = threading.Event()
        second_release = threading.Event()
        releases = [first_release, second_release]

        def target(run_id, payload, abort_event):
            releases[payload["n"]].wait(timeout=5)

        runner = ThreadJobRunner(target)
        runner.create({"n": 0}, run_id="same")
        first = runner.get("same")
        runner.create({"n": 1}, run_id="same")
        second = runner.get("same")

        first_release.set()
        first.join(timeout=5)

        assert runner.get("same") is second
        second_release.set()
        runner.join_all(timeout=5)
        assert runner.is_running("same") is False

    def test_abort_sets_event(self):
        started = threading.Event()
        seen = {}

        def target(run_id, payload, abort_event):
            started.set()
            seen["aborted"] = abort_event.wait(timeout=5)

        runner = ThreadJobRunner(target)
        run_id = runner.create({}, run_id="fixed-id")
        started.wait(timeout=5)
        runner.get(run_id).abort()
        runner.join_all(timeout=5)

        assert run_id == "fixed-id"
        assert seen["aborted"] is True

    def test_unknown_run(self):
        runner = ThreadJobRunner(MagicMock())
        with pytest.raises(RunNotFoundError):
            runner.get("nope")
        assert runner.is_running("nope") is False


class TestCreateControlPlane:
    def test_runs_call_pipeline(self, database, episode):
        pipeline = MagicMock()
        control = create_control_plane(database, pipeline)

        run_id = control.trigger(episode.id)
        control.runner.join_all(timeout=5)

        pipeline.run.assert_called_once()
        args = pipeline.run.call_args.args
        assert args[:2] == (run_id, episode.id)
