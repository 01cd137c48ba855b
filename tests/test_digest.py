"""
Tests for the digest pipeline: persistence is all-or-nothing and one
generation per type runs at a time.
"""

import asyncio
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from homedigest.api import db
from homedigest.app import digest as digest_mod
from homedigest.app.digest import generate_and_notify, generate_digest, get_digest_status
from homedigest.app.errors import (
    DigestInProgressError,
    GenerationError,
    GenerationTimeoutError,
    MalformedResponseError,
    PersistenceError,
)

NOW = datetime(2024, 6, 1, 7, 0, tzinfo=timezone.utc)

RESPONSE = {
    "summary": "Home is running smoothly.",
    "attention_items": [{"title": "Front door battery low", "description": "12% left", "severity": "warning"}],
    "observations": [{"title": "Stable heating", "description": "21C all day", "trend": "stable", "actionable": False}],
    "housekeeping": [],
    "positives": [],
    "tip": {"title": "Replace front door battery", "action": "It will die within a week."},
}


def _gpt(text):
    gpt = AsyncMock()
    gpt.generate.return_value = text
    return gpt


def _seed_snapshots():
    db.set_monitored_entities([{"entity_id": "sensor.temp", "friendly_name": "Temp", "category": "climate"}])
    db.add_snapshots([
        {"entity_id": "sensor.temp", "timestamp": (NOW - timedelta(hours=h)).isoformat(timespec="seconds"),
         "value_type": "number", "value_num": 20 + h}
        for h in (1, 2, 3)
    ])


class TestGenerateDigest:

    async def test_success_persists_one_record(self, ha):
        _seed_snapshots()
        gpt = _gpt("```json\n" + json.dumps(RESPONSE) + "\n```")

        result = await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)

        assert result["summary"] == "Home is running smoothly."
        assert result["attention_count"] == 1
        stored = db.get_digest(result["id"])
        assert stored["type"] == "daily"
        assert json.loads(stored["content"]) == RESPONSE
        prompt, system = gpt.generate.await_args.args
        assert "Temp (climate, normal)" in prompt
        assert "Home Assistant" in system

    async def test_first_run_empties_attention_items(self, ha):
        gpt = _gpt(json.dumps(RESPONSE))
        result = await generate_digest("on_demand", ha=ha, gpt=gpt, now=NOW)
        assert result["attention_count"] == 0
        assert json.loads(db.get_digest(result["id"])["content"])["attention_items"] == []
        assert "First Run Scenario" in gpt.generate.await_args.args[0]

    async def test_truncated_response_is_repaired_and_stored(self, ha):
        _seed_snapshots()
        gpt = _gpt('{"summary": "Partial", "attention_items": [{"title": "x", "descr')
        result = await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        assert result["summary"] == "Partial"
        assert db.get_digest_stats()["total_digests"] == 1

    async def test_missing_summary_falls_back(self, ha):
        _seed_snapshots()
        result = await generate_digest("daily", ha=ha, gpt=_gpt('{"observations": []}'), now=NOW)
        assert result["summary"] == "Daily Digest generated"

    async def test_previous_digest_of_same_type_is_embedded(self, ha):
        _seed_snapshots()
        db.add_digest("daily", json.dumps(RESPONSE), "old", 1)
        db.add_digest("weekly", json.dumps({"observations": [{"title": "Weekly only", "description": "w"}]}), "w", 0)
        gpt = _gpt(json.dumps(RESPONSE))
        await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        prompt = gpt.generate.await_args.args[0]
        assert '"Stable heating": 21C all day' in prompt
        assert "Weekly only" not in prompt

    async def test_unparseable_previous_digest_is_skipped(self, ha):
        _seed_snapshots()
        db.add_digest("daily", "not json", "old", 0)
        gpt = _gpt(json.dumps(RESPONSE))
        result = await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        assert "Previous Digest" not in gpt.generate.await_args.args[0]
        assert result["id"]

    async def test_dismissed_and_notes_reach_the_prompt(self, ha):
        _seed_snapshots()
        db.dismiss_warning("garage_door_open", "Garage door open")
        db.add_note("AdGuard update", "I never update AdGuard")
        gpt = _gpt(json.dumps(RESPONSE))
        await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        prompt = gpt.generate.await_args.args[0]
        assert '- "Garage door open"' in prompt
        assert "I never update AdGuard" in prompt

    async def test_unknown_type_rejected(self, ha):
        with pytest.raises(ValueError):
            await generate_digest("monthly", ha=ha, gpt=_gpt("{}"), now=NOW)


class TestNothingPersistedOnFailure:

    @pytest.mark.parametrize("error", [
        GenerationError("503 from API", status=503, body="overloaded"),
        GenerationTimeoutError("timed out"),
    ])
    async def test_generation_errors(self, ha, error):
        gpt = AsyncMock()
        gpt.generate.side_effect = error
        with pytest.raises(type(error)):
            await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        assert db.get_digest_stats()["total_digests"] == 0

    async def test_malformed_response(self, ha):
        with pytest.raises(MalformedResponseError):
            await generate_digest("daily", ha=ha, gpt=_gpt("Sorry, I can't help with that."), now=NOW)
        assert db.get_digest_stats()["total_digests"] == 0

    async def test_store_failure_becomes_persistence_error(self, ha, monkeypatch):
        def broken(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")
        monkeypatch.setattr(db, "add_digest", broken)
        with pytest.raises(PersistenceError):
            await generate_digest("daily", ha=ha, gpt=_gpt(json.dumps(RESPONSE)), now=NOW)


class TestInFlightGuard:

    async def test_same_type_rejected_other_types_allowed(self, ha):
        release = asyncio.Event()

        async def slow_generate(prompt, system):
            await release.wait()
            return json.dumps(RESPONSE)

        gpt = AsyncMock()
        gpt.generate.side_effect = slow_generate

        first = asyncio.create_task(generate_digest("daily", ha=ha, gpt=gpt, now=NOW))
        while not digest_mod.is_generating("daily"):
            await asyncio.sleep(0)

        with pytest.raises(DigestInProgressError):
            await generate_digest("daily", ha=ha, gpt=_gpt(json.dumps(RESPONSE)), now=NOW)
        assert get_digest_status()["generating"] == ["daily"]

        other = await generate_digest("weekly", ha=ha, gpt=_gpt(json.dumps(RESPONSE)), now=NOW)
        assert other["type"] == "weekly"

        release.set()
        done = await first
        assert done["type"] == "daily"
        assert not digest_mod.is_generating()

    async def test_guard_released_after_failure(self, ha):
        gpt = AsyncMock()
        gpt.generate.side_effect = GenerationError("boom")
        with pytest.raises(GenerationError):
            await generate_digest("daily", ha=ha, gpt=gpt, now=NOW)
        assert not digest_mod.is_generating("daily")


class TestGenerateAndNotify:

    async def test_notification_marks_record(self, ha):
        _seed_snapshots()
        result = await generate_and_notify("daily", ha=ha, gpt=_gpt(json.dumps(RESPONSE)), now=NOW)
        assert result["notification"]["success"] is True
        assert db.get_digest(result["id"])["notification_sent"] == 1
        domain, service, payload = ha.call_service.await_args.args
        assert (domain, service) == ("persistent_notification", "create")
        assert payload["title"] == "🏠 Home Digest - 1 items need attention"

    async def test_failed_notification_keeps_digest(self, ha):
        import aiohttp

        _seed_snapshots()
        ha.call_service.side_effect = aiohttp.ClientError("HA unreachable")
        result = await generate_and_notify("daily", ha=ha, gpt=_gpt(json.dumps(RESPONSE)), now=NOW)
        assert result["notification"]["success"] is False
        stored = db.get_digest(result["id"])
        assert stored is not None
        assert stored["notification_sent"] == 0
