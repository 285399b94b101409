"""
Podpulse FastAPI Main Application
Admin endpoints for podcasts, episode runs and the weekly trend report.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import settings
from .db import EpisodeNotFoundError, db
from .pipeline.control import PipelineAlreadyRunningError, PipelineControlPlane, build_control_plane
from .pipeline.feeds import PodcastNotFoundError, add_podcast, import_past_episodes, poll_all_feeds, remove_podcast
from .pipeline.services import TextGenerationClient
from .pipeline.weekly import NothingToAnalyzeError, WeeklyAggregator
from .storage import create_blob_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

_control: Optional[PipelineControlPlane] = None
_control_lock = threading.Lock()


def get_control() -> PipelineControlPlane:
    """Control plane shared by all requests, built on first use."""
    global _control
    with _control_lock:
        if _control is None:
            _control = build_control_plane(db, settings)
        return _control


def get_weekly() -> WeeklyAggregator:
    return WeeklyAggregator(db, TextGenerationClient(settings), settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.ensure_directories()
    db.init_tables()
    resumed = get_control().resume_interrupted()
    if resumed:
        logger.info(f"Startup: resumed {resumed} interrupted runs")
    yield


app = FastAPI(
    title="Podpulse",
    description="Podcast transcription and analysis pipeline",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Auth Middleware ---

@app.middleware("http")
async def verify_token(request: Request, call_next):
    """Verify API token for every non-public endpoint."""
    public_paths = ["/", "/docs", "/openapi.json", "/health"]
    if request.url.path in public_paths:
        return await call_next(request)

    token = request.query_params.get("token") or request.headers.get("Authorization", "").replace("Bearer ", "")
    if token != settings.api_token:
        return JSONResponse(status_code=401, content={"error": "Invalid or missing API token"})

    return await call_next(request)


# --- Health Check ---

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


# --- Podcasts ---

class AddPodcastRequest(BaseModel):
    feed_url: str


@app.get("/podcasts")
def list_podcasts():
    return {"podcasts": [p.model_dump(mode="json") for p in db.list_podcasts()]}


@app.post("/podcasts")
def create_podcast(body: AddPodcastRequest):
    """Subscribe to a podcast feed."""
    try:
        podcast = add_podcast(db, body.feed_url)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return podcast.model_dump(mode="json")


@app.delete("/podcasts/{podcast_id}")
def delete_podcast(podcast_id: str):
    """Remove a podcast with its episodes, transcripts, analyses and audio."""
    if db.get_podcast(podcast_id) is None:
        raise HTTPException(status_code=404, detail="Podcast not found")
    removed = remove_podcast(db, create_blob_store(settings), podcast_id)
    return {"status": "deleted", "episodes_removed": removed}


@app.post("/podcasts/{podcast_id}/import-past")
def import_past(podcast_id: str, limit: Optional[int] = Query(None, ge=1)):
    """Import recent episodes published before the subscription, without processing them."""
    try:
        imported = import_past_episodes(db, podcast_id, limit)
    except PodcastNotFoundError:
        raise HTTPException(status_code=404, detail="Podcast not found")
    return {"imported_count": imported}


@app.post("/poll")
def poll_feeds():
    """Poll all active feeds now."""
    created = poll_all_feeds(db, get_control())
    return {"new_episodes": created}


# --- Episodes ---

@app.get("/episodes/{episode_id}")
def get_episode_detail(episode_id: str):
    """Episode with its transcript segments and analysis."""
    episode = db.get_episode(episode_id)
    if episode is None:
        raise HTTPException(status_code=404, detail="Episode not found")

    analysis = db.get_analysis(episode_id)
    return {
        "episode": episode.model_dump(mode="json"),
        "segments": [s.model_dump(mode="json") for s in db.get_segments(episode_id)],
        "analysis": analysis.model_dump(mode="json") if analysis else None,
    }


@app.post("/episodes/{episode_id}/process")
def process_episode(episode_id: str):
    """Start the processing pipeline for an episode."""
    try:
        run_id = get_control().trigger(episode_id)
    except EpisodeNotFoundError:
        raise HTTPException(status_code=404, detail="Episode not found")
    except PipelineAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "started", "workflow_id": run_id}


@app.post("/episodes/{episode_id}/cancel")
def cancel_episode(episode_id: str):
    try:
        get_control().cancel(episode_id)
    except EpisodeNotFoundError:
        raise HTTPException(status_code=404, detail="Episode not found")
    return {"status": "cancelled"}


@app.post("/episodes/{episode_id}/reset")
def reset_episode(episode_id: str):
    """Delete transcript and analysis and return the episode to pending."""
    try:
        get_control().reset(episode_id)
    except EpisodeNotFoundError:
        raise HTTPException(status_code=404, detail="Episode not found")
    return {"status": "reset"}


@app.post("/episodes/cancel-all")
def cancel_all_episodes():
    return {"cancelled_count": get_control().cancel_all()}


# --- Weekly Analysis ---

@app.get("/weekly")
def get_latest_weekly():
    weekly = get_weekly().latest()
    return {"weekly": weekly.model_dump(mode="json") if weekly else None}


@app.post("/weekly")
def generate_weekly(force: bool = Query(False, description="Ignore the cached report")):
    """Generate the weekly trend report, or return the cached one."""
    try:
        result = get_weekly().generate(force_refresh=force)
    except NothingToAnalyzeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return result.model_dump(mode="json")


def run_server():
    """Run the API server with uvicorn."""
    import uvicorn
    uvicorn.run(
        "podpulse.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
