"""
Digest pipeline: collect -> compose -> generate -> normalize -> persist.

All-or-nothing at the record level. Any error that escapes
``generate_digest`` means no digest row was written. Collector failures
are absorbed earlier, in ``gather_health_reports``.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from homedigest.api import db
from homedigest.app.collectors import gather_health_reports
from homedigest.app.composer import analysis_window, build_digest_prompt
from homedigest.app.errors import DigestInProgressError, PersistenceError
from homedigest.app.normalizer import normalize_digest_content, parse_digest_response
from homedigest.app.notifier import send_digest_notification
from homedigest.app.policy import SYSTEM_DIGEST

logger = logging.getLogger("homedigest.digest")

DIGEST_TYPES = ("daily", "weekly", "on_demand")

# digest types currently being generated
_IN_FLIGHT: set[str] = set()


def is_generating(digest_type: str | None = None) -> bool:
    return bool(_IN_FLIGHT) if digest_type is None else digest_type in _IN_FLIGHT


def _previous_content(digest_type: str) -> Optional[Dict[str, Any]]:
    prev = db.get_latest_digest_by_type(digest_type)
    if not prev:
        return None
    try:
        content = json.loads(prev["content"])
    except (TypeError, ValueError) as e:
        logger.warning("Could not parse previous %s digest #%s: %s", digest_type, prev.get("id"), e)
        return None
    return content if isinstance(content, dict) else None


async def generate_digest(digest_type: str = "on_demand", *, ha, gpt, now: datetime | None = None,
                          language: str | None = None) -> Dict[str, Any]:
    """
    Build and store one digest. Returns the stored record
    ``{id, type, content, summary, attention_count, generated_at}``.

    A second call for a type that is still generating raises
    DigestInProgressError; other types are not blocked.
    """
    if digest_type not in DIGEST_TYPES:
        raise ValueError(f"Unknown digest type: {digest_type}")
    if digest_type in _IN_FLIGHT:
        raise DigestInProgressError(digest_type)

    _IN_FLIGHT.add(digest_type)
    try:
        return await _generate(digest_type, ha=ha, gpt=gpt, now=now, language=language)
    finally:
        _IN_FLIGHT.discard(digest_type)


async def _generate(digest_type: str, *, ha, gpt, now: datetime | None, language: str | None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    start, end = analysis_window(digest_type, now)
    logger.info("Generating %s digest for %s .. %s", digest_type,
                start.isoformat(timespec="seconds"), end.isoformat(timespec="seconds"))

    profile = db.get_profile()
    entities = db.get_monitored_entities()
    entity_stats = db.get_entity_stats()
    snapshots = db.get_snapshots_for_analysis(start.isoformat(timespec="seconds"), end.isoformat(timespec="seconds"))
    first_run = len(snapshots) == 0

    reports = await gather_health_reports(ha, now)

    prompt = build_digest_prompt(
        digest_type=digest_type,
        profile=profile,
        entities=entities,
        entity_stats=entity_stats,
        snapshots=snapshots,
        reports=reports,
        dismissed=db.get_dismissed_warnings(),
        notes=db.get_notes(),
        previous_digest=_previous_content(digest_type),
        language=language,
    )

    raw = await gpt.generate(prompt, SYSTEM_DIGEST)
    logger.debug("Model response: %d chars", len(raw))

    content, summary, attention_count = normalize_digest_content(parse_digest_response(raw))
    if first_run and content.get("attention_items"):
        logger.info("First run: dropping %d attention item(s)", len(content["attention_items"]))
        content["attention_items"] = []
        attention_count = 0

    content_json = json.dumps(content, ensure_ascii=False)
    try:
        digest_id = db.add_digest(digest_type, content_json, summary, attention_count)
    except sqlite3.Error as e:
        logger.error("Failed to store %s digest: %s", digest_type, e)
        raise PersistenceError(f"Failed to store digest: {e}") from e

    logger.info("Stored %s digest #%d (%d attention items): %s", digest_type, digest_id, attention_count, summary)
    return {
        "id": digest_id,
        "type": digest_type,
        "content": content_json,
        "summary": summary,
        "attention_count": attention_count,
        "generated_at": now.isoformat(timespec="seconds"),
    }


def get_digest_status() -> Dict[str, Any]:
    latest = db.get_latest_digest()
    return {
        "has_digest": latest is not None,
        "generating": sorted(_IN_FLIGHT),
        "last_digest": {
            "id": latest["id"],
            "type": latest["type"],
            "timestamp": latest["timestamp"],
            "summary": latest["summary"],
            "attention_count": latest["attention_count"],
        } if latest else None,
    }


async def generate_and_notify(digest_type: str = "daily", *, ha, gpt, now: datetime | None = None,
                              language: str | None = None) -> Dict[str, Any]:
    """Generate, store, then notify. A failed notification leaves the stored digest in place."""
    digest = await generate_digest(digest_type, ha=ha, gpt=gpt, now=now, language=language)
    digest["notification"] = await send_digest_notification(ha, digest)
    return digest
