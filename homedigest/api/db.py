import os
import re
import json
import sqlite3
from pathlib import Path
from datetime import datetime, timezone

DB_PATH = Path(os.environ.get("HOMEDIGEST_DB", "/data/homedigest.db"))


def _conn():
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH.as_posix(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def init_db():
    with _conn() as c:
        c.executescript("""
        CREATE TABLE IF NOT EXISTS profile (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT
        );

        CREATE TABLE IF NOT EXISTS monitored_entities (
            entity_id TEXT PRIMARY KEY,
            friendly_name TEXT,
            domain TEXT,
            category TEXT,
            priority TEXT DEFAULT 'normal',          -- critical|normal|low|ignore
            storage_strategy TEXT DEFAULT 'daily_snapshot',
            updated_at TEXT
        );

        -- append-only; one row per entity per collection tick
        CREATE TABLE IF NOT EXISTS snapshots (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_id TEXT NOT NULL,
            timestamp TEXT NOT NULL,                 -- UTC ISO, seconds precision
            value_type TEXT NOT NULL,                -- number|state
            value_num REAL,
            value_str TEXT,
            attributes TEXT                          -- JSON, allowlisted keys only
        );
        CREATE INDEX IF NOT EXISTS ix_snapshots_entity_time ON snapshots(entity_id, timestamp);
        CREATE INDEX IF NOT EXISTS ix_snapshots_time ON snapshots(timestamp);

        CREATE TABLE IF NOT EXISTS digests (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            type TEXT NOT NULL,                      -- daily|weekly|on_demand
            content TEXT,                            -- JSON digest payload
            summary TEXT,
            attention_count INTEGER DEFAULT 0,
            notification_sent INTEGER DEFAULT 0
        );
        CREATE INDEX IF NOT EXISTS ix_digests_type_ts ON digests(type, timestamp);

        CREATE TABLE IF NOT EXISTS dismissed_warnings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            warning_key TEXT UNIQUE NOT NULL,
            title TEXT,
            dismissed_at TEXT
        );

        CREATE TABLE IF NOT EXISTS user_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            warning_key TEXT NOT NULL,
            title TEXT,
            note TEXT NOT NULL,
            created_at TEXT
        );
        """)
        c.commit()


# ---------------- Profile ----------------

def get_profile() -> dict:
    with _conn() as c:
        rows = c.execute("SELECT key, value FROM profile").fetchall()
    profile = {}
    for r in rows:
        try:
            profile[r["key"]] = json.loads(r["value"])
        except (TypeError, ValueError):
            profile[r["key"]] = r["value"]
    return profile


def set_profile(data: dict) -> None:
    ts = _now_iso()
    with _conn() as c:
        c.executemany(
            "INSERT INTO profile (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            [(k, v if isinstance(v, str) else json.dumps(v), ts) for k, v in data.items()],
        )
        c.commit()


def is_profile_complete() -> bool:
    profile = get_profile()
    return all(k in profile for k in ("occupants", "schedule", "priorities"))


# ---------------- Monitored entities ----------------

def set_monitored_entities(entities: list[dict]) -> int:
    ts = _now_iso()
    rows = [
        (
            e["entity_id"],
            e.get("friendly_name") or e["entity_id"],
            e.get("domain") or e["entity_id"].split(".", 1)[0],
            e.get("category") or "other",
            e.get("priority") or "normal",
            e.get("storage_strategy") or "daily_snapshot",
            ts,
        )
        for e in entities
    ]
    with _conn() as c:
        c.executemany(
            """
            INSERT INTO monitored_entities
                (entity_id, friendly_name, domain, category, priority, storage_strategy, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entity_id) DO UPDATE SET
                friendly_name = excluded.friendly_name,
                domain = excluded.domain,
                category = excluded.category,
                priority = excluded.priority,
                storage_strategy = excluded.storage_strategy,
                updated_at = excluded.updated_at
            """,
            rows,
        )
        c.commit()
    return len(rows)


def get_monitored_entities(include_ignored: bool = False) -> list[dict]:
    sql = "SELECT entity_id, friendly_name, domain, category, priority, storage_strategy FROM monitored_entities"
    if not include_ignored:
        sql += " WHERE priority != 'ignore'"
    sql += " ORDER BY category, friendly_name"
    with _conn() as c:
        return [dict(r) for r in c.execute(sql).fetchall()]


def get_entity_stats() -> list[dict]:
    """Entity counts per category (ignored entities excluded)."""
    with _conn() as c:
        rows = c.execute(
            "SELECT category, COUNT(*) AS count FROM monitored_entities "
            "WHERE priority != 'ignore' GROUP BY category ORDER BY category"
        ).fetchall()
    return [dict(r) for r in rows]


def get_battery_entities() -> list[dict]:
    with _conn() as c:
        rows = c.execute(
            "SELECT entity_id, friendly_name, category FROM monitored_entities "
            "WHERE (category = 'power' OR entity_id LIKE '%battery%') AND priority != 'ignore'"
        ).fetchall()
    return [dict(r) for r in rows]


# ---------------- Snapshots ----------------

def add_snapshots(snapshots: list[dict]) -> int:
    with _conn() as c:
        c.executemany(
            "INSERT INTO snapshots (entity_id, timestamp, value_type, value_num, value_str, attributes) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (
                    s["entity_id"],
                    s["timestamp"],
                    s["value_type"],
                    s.get("value_num"),
                    s.get("value_str"),
                    json.dumps(s["attributes"]) if s.get("attributes") else None,
                )
                for s in snapshots
            ],
        )
        c.commit()
    return len(snapshots)


def get_snapshots_for_analysis(start_iso: str, end_iso: str) -> list[dict]:
    """All non-ignored snapshots in [start, end], joined with entity metadata."""
    with _conn() as c:
        rows = c.execute(
            """
            SELECT s.entity_id, s.timestamp, s.value_type, s.value_num, s.value_str,
                   me.friendly_name, me.category, me.priority
            FROM snapshots s
            JOIN monitored_entities me ON s.entity_id = me.entity_id
            WHERE s.timestamp >= ? AND s.timestamp <= ? AND me.priority != 'ignore'
            ORDER BY s.entity_id, s.timestamp
            """,
            (start_iso, end_iso),
        ).fetchall()
    return [dict(r) for r in rows]


def get_numeric_series(entity_id: str, start_iso: str, end_iso: str) -> list[tuple[str, float]]:
    with _conn() as c:
        rows = c.execute(
            "SELECT timestamp, value_num FROM snapshots "
            "WHERE entity_id = ? AND value_num IS NOT NULL AND timestamp >= ? AND timestamp <= ? "
            "ORDER BY timestamp ASC",
            (entity_id, start_iso, end_iso),
        ).fetchall()
    return [(r["timestamp"], r["value_num"]) for r in rows]


def delete_old_snapshots(before_iso: str) -> int:
    with _conn() as c:
        cur = c.execute("DELETE FROM snapshots WHERE timestamp < ?", (before_iso,))
        c.commit()
        return cur.rowcount


def get_snapshot_stats() -> dict:
    with _conn() as c:
        r = c.execute(
            "SELECT COUNT(*) AS total_snapshots, COUNT(DISTINCT entity_id) AS entities_with_data, "
            "MIN(timestamp) AS oldest_snapshot, MAX(timestamp) AS newest_snapshot FROM snapshots"
        ).fetchone()
    return dict(r)


# ---------------- Digests ----------------

_DIGEST_COLS = "id, timestamp, type, content, summary, attention_count, notification_sent"


def add_digest(digest_type: str, content: str, summary: str, attention_count: int) -> int:
    with _conn() as c:
        cur = c.execute(
            "INSERT INTO digests (timestamp, type, content, summary, attention_count, notification_sent) "
            "VALUES (?, ?, ?, ?, ?, 0)",
            (_now_iso(), digest_type, content, summary, int(attention_count)),
        )
        c.commit()
        return cur.lastrowid


def get_digest(digest_id: int) -> dict | None:
    with _conn() as c:
        r = c.execute(f"SELECT {_DIGEST_COLS} FROM digests WHERE id = ?", (digest_id,)).fetchone()
    return dict(r) if r else None


def get_latest_digest() -> dict | None:
    with _conn() as c:
        r = c.execute(f"SELECT {_DIGEST_COLS} FROM digests ORDER BY timestamp DESC, id DESC LIMIT 1").fetchone()
    return dict(r) if r else None


def get_latest_digest_by_type(digest_type: str) -> dict | None:
    with _conn() as c:
        r = c.execute(
            f"SELECT {_DIGEST_COLS} FROM digests WHERE type = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
            (digest_type,),
        ).fetchone()
    return dict(r) if r else None


def get_digests(limit: int = 10, offset: int = 0) -> list[dict]:
    with _conn() as c:
        rows = c.execute(
            "SELECT id, timestamp, type, summary, attention_count, notification_sent FROM digests "
            "ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
    return [dict(r) for r in rows]


def mark_notification_sent(digest_id: int) -> None:
    with _conn() as c:
        c.execute("UPDATE digests SET notification_sent = 1 WHERE id = ?", (digest_id,))
        c.commit()


def get_digest_stats() -> dict:
    with _conn() as c:
        r = c.execute(
            "SELECT COUNT(*), SUM(attention_count), AVG(attention_count), MAX(timestamp) FROM digests"
        ).fetchone()
    total, total_attention, avg_attention, last_ts = tuple(r)
    return {
        "total_digests": total or 0,
        "total_attention_items": total_attention or 0,
        "avg_attention_items": round(avg_attention or 0, 1),
        "last_digest_time": last_ts,
    }


# ---------------- Dismissed warnings ----------------

def generate_warning_key(title: str) -> str:
    """lowercase, drop punctuation, whitespace runs -> '_', first 50 chars."""
    key = re.sub(r"[^a-z0-9\s]", "", (title or "").lower())
    key = re.sub(r"\s+", "_", key)
    return key[:50]


def dismiss_warning(warning_key: str, title: str | None = None) -> None:
    with _conn() as c:
        c.execute(
            "INSERT OR REPLACE INTO dismissed_warnings (warning_key, title, dismissed_at) VALUES (?, ?, ?)",
            (warning_key, title, _now_iso()),
        )
        c.commit()


def is_warning_dismissed(warning_key: str) -> bool:
    with _conn() as c:
        r = c.execute("SELECT 1 FROM dismissed_warnings WHERE warning_key = ?", (warning_key,)).fetchone()
    return r is not None


def get_dismissed_warnings() -> list[dict]:
    with _conn() as c:
        rows = c.execute(
            "SELECT warning_key, title, dismissed_at FROM dismissed_warnings ORDER BY dismissed_at DESC, id DESC"
        ).fetchall()
    return [dict(r) for r in rows]


def restore_warning(warning_key: str) -> bool:
    with _conn() as c:
        cur = c.execute("DELETE FROM dismissed_warnings WHERE warning_key = ?", (warning_key,))
        c.commit()
        return cur.rowcount > 0


# ---------------- User notes ----------------

_NOTE_COLS = "id, warning_key, title, note, created_at"


def add_note(title: str, note: str) -> dict:
    key = generate_warning_key(title)
    ts = _now_iso()
    with _conn() as c:
        cur = c.execute(
            "INSERT INTO user_notes (warning_key, title, note, created_at) VALUES (?, ?, ?, ?)",
            (key, title, note, ts),
        )
        c.commit()
        note_id = cur.lastrowid
    return {"id": note_id, "warning_key": key, "title": title, "note": note, "created_at": ts}


def get_notes() -> list[dict]:
    with _conn() as c:
        rows = c.execute(f"SELECT {_NOTE_COLS} FROM user_notes ORDER BY created_at DESC, id DESC").fetchall()
    return [dict(r) for r in rows]


def get_note(note_id: int) -> dict | None:
    with _conn() as c:
        r = c.execute(f"SELECT {_NOTE_COLS} FROM user_notes WHERE id = ?", (note_id,)).fetchone()
    return dict(r) if r else None


def get_note_for_warning(warning_key: str) -> dict | None:
    with _conn() as c:
        r = c.execute(
            f"SELECT {_NOTE_COLS} FROM user_notes WHERE warning_key = ? ORDER BY id DESC LIMIT 1",
            (warning_key,),
        ).fetchone()
    return dict(r) if r else None


def update_note(note_id: int, note: str) -> bool:
    with _conn() as c:
        cur = c.execute("UPDATE user_notes SET note = ? WHERE id = ?", (note, note_id))
        c.commit()
        return cur.rowcount > 0


def delete_note(note_id: int) -> bool:
    with _conn() as c:
        cur = c.execute("DELETE FROM user_notes WHERE id = ?", (note_id,))
        c.commit()
        return cur.rowcount > 0
