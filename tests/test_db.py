"""
Tests for the sqlite store: warning keys, dismissals, notes, digests, snapshots.
"""

import json

from homedigest.api import db


class TestWarningKey:
    """lowercase, punctuation dropped, whitespace runs -> '_', 50 chars"""

    def test_example(self):
        assert db.generate_warning_key("High CPU usage on Add-on X!") == "high_cpu_usage_on_addon_x"

    def test_whitespace_runs_collapse(self):
        assert db.generate_warning_key("  Door   left\topen ") == "_door_left_open_"

    def test_truncated_to_fifty(self):
        assert len(db.generate_warning_key("word " * 40)) == 50


class TestDismissals:

    def test_dismiss_and_restore(self):
        key = db.generate_warning_key("Garage door open")
        db.dismiss_warning(key, "Garage door open")
        assert db.is_warning_dismissed(key)
        assert [d["title"] for d in db.get_dismissed_warnings()] == ["Garage door open"]

        assert db.restore_warning(key) is True
        assert not db.is_warning_dismissed(key)
        assert db.restore_warning(key) is False

    def test_dismiss_twice_keeps_one_row(self):
        db.dismiss_warning("garage_door_open", "Garage door open")
        db.dismiss_warning("garage_door_open", "Garage Door Open")
        rows = db.get_dismissed_warnings()
        assert len(rows) == 1
        assert rows[0]["title"] == "Garage Door Open"


class TestNotes:

    def test_crud(self):
        created = db.add_note("AdGuard update available", "I never update AdGuard")
        assert created["warning_key"] == "adguard_update_available"
        assert db.get_note_for_warning("adguard_update_available")["note"] == "I never update AdGuard"

        assert db.update_note(created["id"], "Updates are manual") is True
        assert db.get_note(created["id"])["note"] == "Updates are manual"

        assert db.delete_note(created["id"]) is True
        assert db.get_notes() == []
        assert db.update_note(created["id"], "x") is False


class TestDigests:

    def test_add_and_read_back(self):
        first = db.add_digest("daily", json.dumps({"summary": "a"}), "a", 0)
        second = db.add_digest("weekly", json.dumps({"summary": "b"}), "b", 2)

        assert db.get_digest(first)["summary"] == "a"
        assert db.get_latest_digest()["id"] == second
        assert db.get_latest_digest_by_type("daily")["id"] == first
        assert db.get_latest_digest_by_type("on_demand") is None
        assert [d["id"] for d in db.get_digests(10, 0)] == [second, first]

        stats = db.get_digest_stats()
        assert stats["total_digests"] == 2
        assert stats["total_attention_items"] == 2

    def test_notification_flag(self):
        digest_id = db.add_digest("daily", "{}", "x", 0)
        assert db.get_digest(digest_id)["notification_sent"] == 0
        db.mark_notification_sent(digest_id)
        assert db.get_digest(digest_id)["notification_sent"] == 1


class TestProfileAndSnapshots:

    def test_profile_round_values(self):
        db.set_profile({"occupants": {"adults": 2}, "concerns": "Water leaks"})
        profile = db.get_profile()
        assert profile["occupants"] == {"adults": 2}
        assert profile["concerns"] == "Water leaks"
        assert not db.is_profile_complete()

    def test_ignored_entities_excluded_from_analysis(self):
        db.set_monitored_entities([
            {"entity_id": "sensor.a", "priority": "normal"},
            {"entity_id": "sensor.b", "priority": "ignore"},
        ])
        db.add_snapshots([
            {"entity_id": "sensor.a", "timestamp": "2024-01-01T10:00:00+00:00", "value_type": "number", "value_num": 1},
            {"entity_id": "sensor.b", "timestamp": "2024-01-01T10:00:00+00:00", "value_type": "number", "value_num": 2},
        ])
        rows = db.get_snapshots_for_analysis("2024-01-01T00:00:00+00:00", "2024-01-02T00:00:00+00:00")
        assert [r["entity_id"] for r in rows] == ["sensor.a"]
        assert [e["entity_id"] for e in db.get_monitored_entities()] == ["sensor.a"]
        assert len(db.get_monitored_entities(include_ignored=True)) == 2

    def test_delete_old_snapshots(self):
        db.add_snapshots([
            {"entity_id": "sensor.a", "timestamp": "2024-01-01T10:00:00+00:00", "value_type": "number", "value_num": 1},
            {"entity_id": "sensor.a", "timestamp": "2024-01-09T10:00:00+00:00", "value_type": "number", "value_num": 2},
        ])
        assert db.delete_old_snapshots("2024-01-05T00:00:00+00:00") == 1
        assert db.get_snapshot_stats()["total_snapshots"] == 1
