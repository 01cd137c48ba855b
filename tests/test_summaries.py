"""
Tests for per-entity summaries and the 3 sigma outlier rule.
"""

import pytest

from homedigest.app.summaries import (
    detect_outliers,
    format_entity_summary,
    pack_entity_summaries_for_prompt,
    summarize_entities,
)


def _snap(eid, value, name=None, category="climate", priority="normal"):
    row = {"entity_id": eid, "friendly_name": name or eid, "category": category, "priority": priority}
    if isinstance(value, (int, float)):
        row.update(value_type="number", value_num=value, value_str=None)
    else:
        row.update(value_type="state", value_num=None, value_str=value)
    return row


class TestDetectOutliers:
    """Population standard deviation, strict threshold"""

    def test_flags_value_beyond_three_sigma(self):
        values = [10] + [0] * 10
        avg, sd, outliers = detect_outliers(values)
        assert abs(10 - avg) > 3 * sd
        assert outliers == [10]

    def test_exactly_three_sigma_is_not_flagged(self):
        # mean 1, population stddev 3, deviation exactly 9
        avg, sd, outliers = detect_outliers([10] + [0] * 9)
        assert avg == pytest.approx(1.0)
        assert sd == pytest.approx(3.0)
        assert outliers == []

    def test_flat_series_never_flagged(self):
        _, sd, outliers = detect_outliers([21.5] * 20)
        assert sd == 0
        assert outliers == []

    def test_single_value(self):
        avg, sd, outliers = detect_outliers([5])
        assert (avg, sd, outliers) == (5, 0.0, [])


class TestSummarizeEntities:
    """Grouping and data-quality issues"""

    def test_numeric_and_discrete(self):
        snaps = [_snap("sensor.t", v) for v in (20, 21, 22)] + [
            _snap("binary_sensor.door", s, category="security") for s in ("off", "on", "off")
        ]
        summaries, issues = summarize_entities(snaps)
        by_id = {s.entity_id: s for s in summaries}

        t = by_id["sensor.t"]
        assert t.is_numeric
        assert (t.min, t.max, t.avg, t.count) == (20, 22, 21, 3)

        door = by_id["binary_sensor.door"]
        assert not door.is_numeric
        assert door.states == ["off", "on"]
        assert issues == []

    def test_outlier_becomes_data_quality_issue(self):
        snaps = [_snap("sensor.power", 0, name="Power") for _ in range(10)] + [_snap("sensor.power", 10, name="Power")]
        summaries, issues = summarize_entities(snaps)
        assert summaries[0].is_outlier
        assert len(issues) == 1
        assert issues[0].entity_id == "sensor.power"
        assert issues[0].severity == "data_quality"
        assert "10.0" in issues[0].issue
        assert "POSSIBLE DATA QUALITY ISSUE" in format_entity_summary(summaries[0])


class TestPackForPrompt:
    """Line budget and ordering"""

    def test_priority_order(self):
        snaps = [
            _snap("sensor.low", 1, name="Low", priority="low"),
            _snap("sensor.crit", 1, name="Crit", priority="critical"),
            _snap("sensor.norm", 1, name="Norm"),
        ]
        summaries, _ = summarize_entities(snaps)
        lines = pack_entity_summaries_for_prompt(summaries).splitlines()
        assert [l.split(" (")[0] for l in lines] == ["- Crit", "- Norm", "- Low"]

    def test_overflow_marker(self):
        snaps = [_snap(f"sensor.s{i:03d}", i) for i in range(250)]
        summaries, _ = summarize_entities(snaps)
        lines = pack_entity_summaries_for_prompt(summaries, max_lines=200).splitlines()
        assert len(lines) == 201
        assert lines[-1] == "... (+50 more)"
