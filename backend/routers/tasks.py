"""Task router — in-flight pipeline jobs and WebSocket status streaming."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status

from backend.services.shared.task_manager import TaskInfo
from backend.services.songs.status import is_terminal
from backend.services.songs.types import Song

logger = logging.getLogger("songsmith.routers.tasks")
router = APIRouter()

_WS_POLL_INTERVAL = 0.5   # seconds between status checks for WebSocket updates
_WS_TIMEOUT       = 3600  # max WebSocket session duration (1 hour)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _task_to_dict(info: TaskInfo, song: Optional[Song]) -> Dict[str, Any]:
    return {
        "song_id":    info.key,
        "task_type":  info.name,
        "started_at": info.started_at,
        "status":     song.status.value if song else None,
        "message":    song.status_message if song else None,
    }


def _event(song: Song, running: bool) -> Dict[str, Any]:
    return {
        "song_id":    song.id,
        "status":     song.status.value,
        "message":    song.status_message,
        "failedStep": song.failed_step.value if song.failed_step else None,
        "running":    running,
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

# NOTE: GET "/" must be defined before GET "/{song_id}" so FastAPI doesn't
# swallow the empty path as a song_id.

@router.get("/")
async def list_active_tasks(request: Request) -> Dict[str, Any]:
    """List pipelines that are currently running."""
    supervisor = request.app.state.supervisor
    store = request.app.state.pipeline.store
    tasks = [_task_to_dict(info, store.get(info.key)) for info in supervisor.active()]
    return {"tasks": tasks, "total": len(tasks)}


@router.get("/{song_id}")
async def get_task(song_id: str, request: Request) -> Dict[str, Any]:
    """Return whether a pipeline is running for a song, with its status."""
    song = request.app.state.pipeline.store.get(song_id)
    if song is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Song {song_id!r} not found.",
        )
    return _event(song, request.app.state.supervisor.is_running(song_id))


@router.websocket("/ws/{song_id}")
async def song_progress_ws(websocket: WebSocket, song_id: str) -> None:
    """Stream a song's status over WebSocket.

    Pushes ``{song_id, status, message, failedStep, running}`` whenever the
    status or message changes, and closes once the song reaches a terminal
    state with no pipeline running, or after 1 hour.
    """
    await websocket.accept()
    store = websocket.app.state.pipeline.store
    supervisor = websocket.app.state.supervisor
    elapsed = 0.0
    last: Dict[str, Any] = {}

    try:
        while elapsed < _WS_TIMEOUT:
            song = store.get(song_id)

            if song is None:
                await websocket.send_json({
                    "song_id": song_id,
                    "status": "error",
                    "message": f"Song {song_id!r} not found.",
                    "failedStep": None,
                    "running": False,
                })
                break

            running = supervisor.is_running(song_id)
            event = _event(song, running)
            if event != last:
                await websocket.send_json(event)
                last = event

            if is_terminal(song.status) and not running:
                break

            await asyncio.sleep(_WS_POLL_INTERVAL)
            elapsed += _WS_POLL_INTERVAL

        await websocket.close()

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected for song_id=%s", song_id)
    except Exception as exc:  # noqa: BLE001
        logger.warning("WebSocket error for song_id=%s: %s", song_id, exc)
