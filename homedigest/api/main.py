"""
FastAPI application serving the Home Digest API.

Digest generation runs in-request (the caller waits for the model). The
Home Assistant client and the snapshot collector are created at startup
and shared with the background scheduler.
"""
# ── Standard Library ────────────────────────────────────────────────────────────
import asyncio
import json
import logging

# ── Third-Party ────────────────────────────────────────────────────────────────
from fastapi import FastAPI, HTTPException, Query
from fastapi import Path as PathParam
from fastapi.middleware.cors import CORSMiddleware

# ── First-Party ────────────────────────────────────────────────────────────────
from homedigest.api import db
from homedigest.api.models import (
    DigestRequest,
    DismissRequest,
    EntitiesUpdate,
    NoteIn,
    NoteUpdate,
    ProfileUpdate,
    Settings,
)
from homedigest.app.collector import SnapshotCollector
from homedigest.app.config import load_config, openai_api_key, public_config, save_config
from homedigest.app.digest import generate_and_notify, generate_digest, get_digest_status
from homedigest.app.errors import (
    DigestError,
    DigestInProgressError,
    GenerationError,
    GenerationTimeoutError,
    MalformedResponseError,
    PersistenceError,
)
from homedigest.app.ha import HAClient
from homedigest.app.notifier import send_test_notification
from homedigest.app.run import make_gpt, start_background_tasks
from homedigest.app.util import next_digest_time, setup_logging

setup_logging(load_config().get("log_level", "INFO"))
logger = logging.getLogger("homedigest.api")

app = FastAPI(title="Home Digest API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_HA: HAClient | None = None
_COLLECTOR: SnapshotCollector | None = None
_BACKGROUND: list[asyncio.Task] = []


def _require_ha() -> HAClient:
    if _HA is None:
        raise HTTPException(status_code=503, detail="Home Assistant connection not available")
    return _HA


def _require_api_key() -> None:
    if not openai_api_key():
        raise HTTPException(status_code=503, detail="OpenAI API key is not configured")


def _digest_http_error(e: DigestError) -> HTTPException:
    if isinstance(e, DigestInProgressError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, GenerationTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, MalformedResponseError):
        return HTTPException(status_code=502, detail={"error": str(e), "preview": e.preview})
    if isinstance(e, GenerationError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


async def _run_digest(digest_type: str, notify: bool) -> dict:
    ha = _require_ha()
    _require_api_key()
    cfg = load_config()
    gpt = make_gpt(cfg)
    try:
        if notify:
            return await generate_and_notify(digest_type, ha=ha, gpt=gpt, language=cfg.get("language"))
        return await generate_digest(digest_type, ha=ha, gpt=gpt, language=cfg.get("language"))
    except DigestError as e:
        logger.error("%s digest failed: %s", digest_type, e)
        raise _digest_http_error(e) from e
    finally:
        await gpt.close()


# ---------------- Status ----------------

@app.get("/api/status")
def get_status():
    cfg = public_config()
    return {
        "config": {
            "model": cfg.get("model"),
            "digest_time": cfg.get("digest_time"),
            "weekly_digest_day": cfg.get("weekly_digest_day"),
            "snapshot_interval_minutes": cfg.get("snapshot_interval_minutes"),
            "history_days": cfg.get("history_days"),
            "notification_service": cfg.get("notification_service"),
            "api_key_configured": bool(openai_api_key()),
        },
        "ha_connected": _HA is not None,
        "profile_complete": db.is_profile_complete(),
        "digest": get_digest_status(),
        "next_digest_time": next_digest_time(cfg.get("digest_time", "07:00")).isoformat(timespec="seconds"),
    }


# ---------------- Digests ----------------

@app.post("/api/digest/generate")
async def generate(req: DigestRequest | None = None):
    digest_type = (req.type if req else None) or "on_demand"
    return await _run_digest(digest_type, notify=False)


@app.post("/api/digest/generate-and-notify")
async def generate_notify(req: DigestRequest | None = None):
    digest_type = (req.type if req else None) or "daily"
    return await _run_digest(digest_type, notify=True)


@app.get("/api/digest/list")
def list_digests(limit: int = Query(10, ge=1, le=100), offset: int = Query(0, ge=0)):
    return {
        "digests": db.get_digests(limit, offset),
        "stats": db.get_digest_stats(),
        "limit": limit,
        "offset": offset,
    }


@app.post("/api/digest/test-notification")
async def test_notification():
    result = await send_test_notification(_require_ha())
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error") or "Notification failed")
    return result


@app.get("/api/digest/{digest_id}")
def get_digest(digest_id: int = PathParam(..., ge=1)):
    row = db.get_digest(digest_id)
    if not row:
        raise HTTPException(status_code=404, detail="Digest not found")
    try:
        row["content"] = json.loads(row["content"])
    except (TypeError, ValueError):
        logger.warning("Digest #%s has unparseable content; returning raw text", digest_id)
    return row


# ---------------- Dismissed warnings ----------------

@app.get("/api/dismissed")
def list_dismissed():
    return db.get_dismissed_warnings()


@app.post("/api/dismissed")
def dismiss(req: DismissRequest):
    key = db.generate_warning_key(req.title)
    if not key:
        raise HTTPException(status_code=400, detail="Title produces an empty warning key")
    db.dismiss_warning(key, req.title)
    logger.info("Dismissed warning %s", key)
    return {"status": "ok", "warning_key": key}


@app.delete("/api/dismissed/{warning_key}")
def restore(warning_key: str):
    if not db.restore_warning(warning_key):
        raise HTTPException(status_code=404, detail="Dismissed warning not found")
    return {"status": "ok", "warning_key": warning_key}


# ---------------- User notes ----------------

@app.get("/api/notes")
def list_notes():
    return db.get_notes()


@app.post("/api/notes")
def create_note(req: NoteIn):
    return db.add_note(req.title.strip(), req.note.strip())


@app.put("/api/notes/{note_id}")
def update_note(note_id: int, req: NoteUpdate):
    if not db.update_note(note_id, req.note.strip()):
        raise HTTPException(status_code=404, detail="Note not found")
    return db.get_note(note_id)


@app.delete("/api/notes/{note_id}")
def delete_note(note_id: int):
    if not db.delete_note(note_id):
        raise HTTPException(status_code=404, detail="Note not found")
    return {"status": "ok", "id": note_id}


# ---------------- Profile / entities ----------------

@app.get("/api/profile")
def get_profile():
    return {"profile": db.get_profile(), "complete": db.is_profile_complete()}


@app.post("/api/profile")
def update_profile(req: ProfileUpdate):
    data = {k: v for k, v in req.model_dump().items() if v is not None}
    if not data:
        raise HTTPException(status_code=400, detail="Nothing to update")
    db.set_profile(data)
    return {"profile": db.get_profile(), "complete": db.is_profile_complete()}


@app.get("/api/entities")
def list_entities(include_ignored: bool = Query(False)):
    return {
        "entities": db.get_monitored_entities(include_ignored=include_ignored),
        "stats": db.get_entity_stats(),
    }


@app.post("/api/entities")
def upsert_entities(req: EntitiesUpdate):
    count = db.set_monitored_entities([e.model_dump() for e in req.entities])
    return {"status": "ok", "count": count}


# ---------------- Collector ----------------

@app.get("/api/collector/status")
def collector_status():
    if _COLLECTOR is None:
        return {"state": "unavailable", "stats": db.get_snapshot_stats()}
    return _COLLECTOR.status()


@app.post("/api/collector/run")
async def collector_run():
    _require_ha()
    if _COLLECTOR is None:
        raise HTTPException(status_code=503, detail="Collector not running")
    return await _COLLECTOR.collect()


# ---------------- Settings ----------------

@app.get("/api/settings")
def get_settings():
    return public_config()


@app.post("/api/settings")
def update_settings(settings: Settings):
    data = {k: v for k, v in settings.model_dump().items() if v is not None}
    logger.info("Updating settings from UI: %s", ", ".join(sorted(data)))
    save_config(data)
    return {"status": "ok"}


# ---------------- Lifecycle ----------------

@app.on_event("startup")
async def startup_event():
    global _HA, _COLLECTOR
    try:
        _HA = HAClient()
    except RuntimeError as e:
        logger.warning("Home Assistant client unavailable; scheduler disabled: %s", e)
        return
    _COLLECTOR = SnapshotCollector(_HA)
    _BACKGROUND.extend(start_background_tasks(_HA, _COLLECTOR))
    logger.info("Home Digest API started, scheduler running.")


@app.on_event("shutdown")
async def shutdown_event():
    for task in _BACKGROUND:
        task.cancel()
    _BACKGROUND.clear()
    if _HA is not None:
        await _HA.close()
