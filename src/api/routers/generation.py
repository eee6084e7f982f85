"""Generation and batch routes for the vesper API."""

import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from api.dependencies import get_orchestrator, get_pipeline
from api.job_store import get_job_store
from api.progress import ws_manager
from api.schemas import (
    BatchParseRequest,
    BatchSubmitRequest,
    BatchSubmitResponse,
    GenerationRequestBody,
    MessageResponse,
    VoiceResponse,
)
from services.batch_input import parse_ndjson
from services.batch_orchestrator import (
    BatchHandle,
    BatchOrchestrator,
    BatchStateError,
    BatchValidationError,
)
from services.item_pipeline import ItemPipeline
from services.tts_service import VOICE_NAMES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generation"])


def _get_handle(orchestrator: BatchOrchestrator, job_id: str) -> BatchHandle:
    handle = orchestrator.get_handle(job_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Batch {job_id} not found")
    return handle


def _submit(orchestrator: BatchOrchestrator, requests, job_id=None) -> BatchSubmitResponse:
    try:
        handle = orchestrator.submit(requests, job_id=job_id)
    except BatchValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BatchSubmitResponse(job_id=handle.job_id, total=handle.job.total, state=handle.job.state.value)


@router.get("/api/voices", response_model=list[VoiceResponse])
async def list_voices() -> list[VoiceResponse]:
    """Voices available for narration."""
    return [VoiceResponse(voice_id=voice_id, name=name) for voice_id, name in VOICE_NAMES.items()]


@router.post("/api/generate")
async def generate_one(
    body: GenerationRequestBody,
    pipeline: ItemPipeline = Depends(get_pipeline),
) -> dict:
    """Run one request through the pipeline and return its result."""
    try:
        request = body.to_request()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    result = await pipeline.run(request)
    return result.to_dict()


@router.post("/api/batches", response_model=BatchSubmitResponse)
async def submit_batch(
    body: BatchSubmitRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> BatchSubmitResponse:
    """Start a batch. Items run one at a time in the order given."""
    try:
        requests = [item.to_request() for item in body.requests]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _submit(orchestrator, requests, body.job_id)


@router.post("/api/batches/parse")
async def parse_batch(
    body: BatchParseRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Parse NDJSON lines, optionally starting a batch with the valid ones."""
    parsed = parse_ndjson(body.text, category_id=body.category_id, voice_id=body.voice_id)
    response = parsed.to_dict()
    if body.submit:
        response["batch"] = _submit(orchestrator, parsed.requests).model_dump()
    return response


@router.get("/api/batches")
async def list_batches(
    status: str | None = None,
    limit: int = 50,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Batches known to this process plus archived snapshots."""
    job_store = await get_job_store()
    return {
        "active": [handle.get_progress().to_dict() for handle in orchestrator.list_handles()],
        "archived": await job_store.list_jobs(status=status, limit=limit),
    }


@router.get("/api/batches/{job_id}")
async def get_batch(
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Live progress, or the archived snapshot of a batch from an earlier run."""
    handle = orchestrator.get_handle(job_id)
    if handle is not None:
        return handle.get_progress().to_dict()

    job_store = await get_job_store()
    archived = await job_store.get_job(job_id)
    if archived is None:
        raise HTTPException(status_code=404, detail=f"Batch {job_id} not found")
    return archived


@router.post("/api/batches/{job_id}/pause", response_model=MessageResponse)
async def pause_batch(
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    handle = _get_handle(orchestrator, job_id)
    try:
        handle.pause()
    except BatchStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MessageResponse(message="Batch will pause before the next item")


@router.post("/api/batches/{job_id}/resume", response_model=MessageResponse)
async def resume_batch(
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    handle = _get_handle(orchestrator, job_id)
    try:
        handle.resume()
    except BatchStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MessageResponse(message="Batch resumed")


@router.post("/api/batches/{job_id}/cancel", response_model=MessageResponse)
async def cancel_batch(
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    handle = _get_handle(orchestrator, job_id)
    handle.cancel()
    return MessageResponse(message="Batch cancelled; the current item will finish")


@router.delete("/api/batches/{job_id}", response_model=MessageResponse)
async def discard_batch(
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    """Drop a finished batch from memory; its archived snapshot stays readable."""
    _get_handle(orchestrator, job_id)
    try:
        orchestrator.discard(job_id)
    except BatchStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return MessageResponse(message="Batch discarded")


@router.post("/api/batches/{job_id}/items/{index}/retry")
async def retry_batch_item(
    job_id: str,
    index: int,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Re-run one failed item of a stopped batch."""
    handle = _get_handle(orchestrator, job_id)
    try:
        result = await handle.retry_item(index)
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BatchStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_dict()


@router.websocket("/ws/batches/{job_id}")
async def batch_progress_socket(
    websocket: WebSocket,
    job_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
) -> None:
    """Stream progress messages for one batch."""
    handle = orchestrator.get_handle(job_id)
    if handle is None:
        await websocket.accept()
        await websocket.send_json({"type": "error", "error": "Batch not found"})
        await websocket.close()
        return

    await ws_manager.connect(job_id, websocket)
    try:
        await websocket.send_json({"type": "progress", **handle.get_progress().to_dict()})
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(job_id, websocket)
