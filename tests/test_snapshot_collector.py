"""
Tests for periodic snapshot collection and retention cleanup.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from homedigest.api import db
from homedigest.app.collector import (
    CollectorState,
    SnapshotCollector,
    build_snapshots,
    cleanup_old_data,
    extract_relevant_attributes,
)

TS = "2024-06-01T12:00:00+00:00"


class TestBuildSnapshots:

    def test_numbers_states_and_skips(self):
        entities = [
            {"entity_id": "sensor.temp", "domain": "sensor"},
            {"entity_id": "binary_sensor.door", "domain": "binary_sensor"},
            {"entity_id": "sensor.offline", "domain": "sensor"},
            {"entity_id": "sensor.gone", "domain": "sensor"},
            {"entity_id": "sensor.noise", "domain": "sensor", "priority": "ignore"},
        ]
        states = [
            {"entity_id": "sensor.temp", "state": "21.5",
             "attributes": {"unit_of_measurement": "°C", "friendly_name": "Temp", "icon": "mdi:thermometer"}},
            {"entity_id": "binary_sensor.door", "state": "off", "attributes": {"device_class": "door"}},
            {"entity_id": "sensor.offline", "state": "unavailable", "attributes": {}},
            {"entity_id": "sensor.noise", "state": "3", "attributes": {}},
        ]

        snapshots, errors = build_snapshots(entities, states, TS)

        by_id = {s["entity_id"]: s for s in snapshots}
        assert set(by_id) == {"sensor.temp", "binary_sensor.door"}
        assert by_id["sensor.temp"]["value_type"] == "number"
        assert by_id["sensor.temp"]["value_num"] == 21.5
        assert by_id["sensor.temp"]["attributes"] == {"unit_of_measurement": "°C"}
        assert by_id["binary_sensor.door"]["value_str"] == "off"
        assert by_id["binary_sensor.door"]["value_num"] is None
        assert errors == [{"entity_id": "sensor.gone", "error": "Entity not found in HA states"}]

    def test_non_finite_numbers_stored_as_state(self):
        snapshots, _ = build_snapshots([{"entity_id": "sensor.x"}], [{"entity_id": "sensor.x", "state": "nan"}], TS)
        assert snapshots[0]["value_type"] == "state"
        assert snapshots[0]["value_str"] == "nan"

    def test_unknown_domain_keeps_no_attributes(self):
        assert extract_relevant_attributes("vacuum", {"battery_level": 50}) == {}
        assert extract_relevant_attributes("cover", {"current_position": 0}) == {"current_position": 0}


class TestSnapshotCollector:

    async def test_collect_stores_snapshots(self, ha):
        db.set_monitored_entities([{"entity_id": "sensor.temp", "friendly_name": "Temp"}])
        ha.states.return_value = [{"entity_id": "sensor.temp", "state": "20", "attributes": {}}]
        collector = SnapshotCollector(ha)

        result = await collector.collect()

        assert result["collected"] == 1
        assert result["skipped"] is False
        assert collector.state is CollectorState.IDLE
        assert collector.last_collection is not None
        assert db.get_snapshot_stats()["total_snapshots"] == 1

    async def test_no_entities_is_a_noop(self, ha):
        result = await SnapshotCollector(ha).collect()
        assert result == {"collected": 0, "errors": 0, "skipped": False}
        ha.states.assert_not_awaited()

    async def test_trigger_while_collecting_is_skipped(self, ha):
        db.set_monitored_entities([{"entity_id": "sensor.temp"}])
        release = asyncio.Event()

        async def slow_states():
            await release.wait()
            return [{"entity_id": "sensor.temp", "state": "20", "attributes": {}}]

        ha.states.side_effect = slow_states
        collector = SnapshotCollector(ha)

        first = asyncio.create_task(collector.collect())
        while not collector.is_collecting:
            await asyncio.sleep(0)

        assert await collector.collect() == {"skipped": True}
        assert collector.status()["state"] == "collecting"

        release.set()
        assert (await first)["collected"] == 1
        assert db.get_snapshot_stats()["total_snapshots"] == 1
        assert not collector.is_collecting

    async def test_failure_returns_to_idle(self, ha):
        db.set_monitored_entities([{"entity_id": "sensor.temp"}])
        ha.states.side_effect = ConnectionError("HA offline")
        collector = SnapshotCollector(ha)

        with pytest.raises(ConnectionError):
            await collector.collect()

        assert collector.state is CollectorState.IDLE
        assert collector.status()["recent_errors"] == [{"error": "HA offline"}]


class TestCleanup:

    def test_drops_snapshots_outside_retention(self):
        db.add_snapshots([
            {"entity_id": "sensor.a", "timestamp": "2024-05-20T10:00:00+00:00", "value_type": "number", "value_num": 1},
            {"entity_id": "sensor.a", "timestamp": "2024-05-30T10:00:00+00:00", "value_type": "number", "value_num": 2},
        ])
        result = cleanup_old_data(history_days=7, now=datetime(2024, 6, 1, 3, 0, tzinfo=timezone.utc))
        assert result == {"deleted": 1, "cutoff": "2024-05-25T03:00:00+00:00"}
        assert db.get_snapshot_stats()["total_snapshots"] == 1
