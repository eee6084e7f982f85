"""Batch progress fan-out: WebSocket broadcast and archive snapshots."""

import logging

from api.job_store import get_job_store
from api.websocket_manager import WebSocketManager
from models.batch import BatchJob
from services.batch_orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)

ws_manager = WebSocketManager()

# Last (state, completed) archived per batch; snapshots are written only on change
_archived_marks: dict[str, tuple[str, int]] = {}


async def publish_progress(job: BatchJob) -> None:
    """Push the current progress to every socket watching this batch."""
    if ws_manager.connection_count(job.job_id) == 0:
        return
    await ws_manager.broadcast(job.job_id, {"type": "progress", **job.progress().to_dict()})


async def archive_batch(job: BatchJob) -> None:
    """Snapshot the batch when its state or completed count moves."""
    mark = (job.state.value, job.completed_count)
    if _archived_marks.get(job.job_id) == mark:
        return
    job_store = await get_job_store()
    await job_store.save_batch(job)
    _archived_marks[job.job_id] = mark


def attach_progress_listeners(orchestrator: BatchOrchestrator) -> BatchOrchestrator:
    orchestrator.add_listener(publish_progress)
    orchestrator.add_listener(archive_batch)
    return orchestrator
