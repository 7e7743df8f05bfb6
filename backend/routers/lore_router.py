"""
Chronicler HTTP endpoints.

Routes:
  POST /events/round-ended              - Round intake (202, or 200 when deduped)
  GET  /lore/status                     - Batcher counters + worker state
  GET  /lore/round-result/latest        - Latest round comment (404 until the first one)
  POST /lore/worker/run-once            - Drain pending batches in the background
  GET  /scheduler/marketing/status      - Marketing policy + poster state
  POST /scheduler/marketing/post-now    - Manual marketing post (?force=1 ignores today's post)

Auth is enforced at the gateway in front of this service.
"""
import asyncio
import logging
from typing import Set

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from models.lore import RoundEvent
from services.runtime import WhisperRuntime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["lore"])

_background: Set[asyncio.Task] = set()


def _runtime(request: Request) -> WhisperRuntime:
    return request.app.state.runtime


@router.post("/events/round-ended", status_code=202)
async def round_ended(body: RoundEvent, request: Request):
    accepted = _runtime(request).processor.handle(body)
    if not accepted:
        return JSONResponse(status_code=200, content={"ok": True, "deduped": True})
    return {"ok": True}


@router.get("/lore/status")
async def lore_status(request: Request):
    rt = _runtime(request)
    return {"ok": True, **rt.batcher.status(), "worker": rt.worker.get_status().model_dump()}


@router.get("/lore/round-result/latest")
async def latest_round_result(request: Request):
    entry = _runtime(request).round_results.latest
    if entry is None:
        raise HTTPException(status_code=404, detail="no_round_result")
    return entry.model_dump()


@router.post("/lore/worker/run-once", status_code=202)
async def worker_run_once(request: Request):
    task = asyncio.create_task(_runtime(request).worker.run_once())
    _background.add(task)
    task.add_done_callback(_background.discard)
    return {"ok": True}


@router.get("/scheduler/marketing/status")
async def marketing_status(request: Request):
    return {"ok": True, **_runtime(request).marketing.status()}


@router.post("/scheduler/marketing/post-now")
async def marketing_post_now(request: Request, force: str = Query(default="")):
    forced = force.lower() in ("1", "true")
    try:
        out = await _runtime(request).marketing.post_now(force=forced)
    except Exception as exc:
        logger.warning("[marketing] Manual post failed: %s", exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    return {"ok": True, **out}
