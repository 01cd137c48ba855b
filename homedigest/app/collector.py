"""
Snapshot collector.

One tick reads every state from Home Assistant and stores one snapshot per
monitored, non-ignored entity. Runs are serialized by an explicit
Idle -> Collecting -> Idle state; a trigger while collecting is skipped,
not queued.
"""

import asyncio
import enum
import logging
import math
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from homedigest.api import db

logger = logging.getLogger("homedigest.collector")

HISTORY_DAYS = int(os.environ.get("HISTORY_DAYS", "7"))

SKIP_STATES = {"unavailable", "unknown"}

# attributes worth keeping per domain; everything else is dropped
RELEVANT_ATTRIBUTES: Dict[str, List[str]] = {
    "climate": ["current_temperature", "target_temperature", "hvac_action", "preset_mode"],
    "sensor": ["device_class", "unit_of_measurement"],
    "binary_sensor": ["device_class"],
    "light": ["brightness", "color_temp", "rgb_color"],
    "switch": [],
    "cover": ["current_position"],
    "media_player": ["media_title", "media_artist", "volume_level"],
    "weather": ["temperature", "humidity", "pressure", "wind_speed"],
}


class CollectorState(str, enum.Enum):
    IDLE = "idle"
    COLLECTING = "collecting"


def extract_relevant_attributes(domain: str, attributes: Dict[str, Any] | None) -> Dict[str, Any]:
    attributes = attributes or {}
    return {k: attributes[k] for k in RELEVANT_ATTRIBUTES.get(domain, []) if attributes.get(k) is not None}


def _as_number(state: str) -> float | None:
    try:
        value = float(state)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def build_snapshots(entities: List[Dict[str, Any]], states: List[Dict[str, Any]],
                    timestamp: str) -> tuple[list[dict], list[dict]]:
    """Returns (snapshots, errors) for one tick. Missing entities are errors, unavailable ones are skipped."""
    state_map = {s.get("entity_id"): s for s in states}
    snapshots: list[dict] = []
    errors: list[dict] = []

    for ent in entities:
        if ent.get("priority") == "ignore":
            continue
        eid = ent["entity_id"]
        st = state_map.get(eid)
        if st is None:
            errors.append({"entity_id": eid, "error": "Entity not found in HA states"})
            continue
        raw = st.get("state")
        if raw in SKIP_STATES:
            continue

        num = _as_number(raw)
        domain = ent.get("domain") or eid.split(".", 1)[0]
        attrs = extract_relevant_attributes(domain, st.get("attributes"))
        snapshots.append({
            "entity_id": eid,
            "timestamp": timestamp,
            "value_type": "number" if num is not None else "state",
            "value_num": num,
            "value_str": None if num is not None else raw,
            "attributes": attrs or None,
        })
    return snapshots, errors


class SnapshotCollector:
    def __init__(self, ha):
        self.ha = ha
        self.state = CollectorState.IDLE
        self.last_collection: datetime | None = None
        self.last_errors: list[dict] = []
        self._lock = asyncio.Lock()

    @property
    def is_collecting(self) -> bool:
        return self.state is CollectorState.COLLECTING

    async def collect(self) -> Dict[str, Any]:
        if self._lock.locked():
            logger.info("Collection already in progress, skipping")
            return {"skipped": True}

        async with self._lock:
            self.state = CollectorState.COLLECTING
            self.last_errors = []
            started = time.monotonic()
            try:
                entities = db.get_monitored_entities()
                if not entities:
                    logger.info("No entities to monitor")
                    return {"collected": 0, "errors": 0, "skipped": False}

                states = await self.ha.states()
                now = datetime.now(timezone.utc)
                snapshots, errors = build_snapshots(entities, states, now.isoformat(timespec="seconds"))
                if snapshots:
                    db.add_snapshots(snapshots)

                self.last_errors = errors
                self.last_collection = now
                duration_ms = int((time.monotonic() - started) * 1000)
                logger.info("Collected %d snapshots in %dms (%d missing)", len(snapshots), duration_ms, len(errors))
                return {
                    "collected": len(snapshots),
                    "errors": len(errors),
                    "duration_ms": duration_ms,
                    "skipped": False,
                }
            except Exception as e:
                logger.error("Collection failed: %s", e)
                self.last_errors.append({"error": str(e)})
                raise
            finally:
                self.state = CollectorState.IDLE

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_collecting": self.is_collecting,
            "last_collection": self.last_collection.isoformat(timespec="seconds") if self.last_collection else None,
            "recent_errors": self.last_errors[:10],
            "stats": db.get_snapshot_stats(),
        }


def cleanup_old_data(history_days: int | None = None, now: datetime | None = None) -> Dict[str, Any]:
    """Drop snapshots older than the retention window."""
    days = HISTORY_DAYS if history_days is None else history_days
    cutoff = ((now or datetime.now(timezone.utc)) - timedelta(days=days)).isoformat(timespec="seconds")
    deleted = db.delete_old_snapshots(cutoff)
    if deleted:
        logger.info("Cleaned up %d old snapshots (before %s)", deleted, cutoff)
    return {"deleted": deleted, "cutoff": cutoff}
