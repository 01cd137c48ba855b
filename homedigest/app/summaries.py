# homedigest/app/summaries.py
from __future__ import annotations

from statistics import mean, pstdev
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

OUTLIER_SIGMAS = 3.0
PRIORITY_ORDER = {"critical": 0, "normal": 1, "low": 2}


class EntitySummary(BaseModel):
    """Per-entity aggregate over the analysis window. Never persisted."""
    entity_id: str
    friendly_name: str
    category: str = "other"
    priority: str = "normal"
    count: int = 0
    # numeric series
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None
    stddev: Optional[float] = None
    is_outlier: bool = False
    outliers: List[float] = Field(default_factory=list)
    # discrete series
    states: List[str] = Field(default_factory=list)

    @property
    def is_numeric(self) -> bool:
        return self.avg is not None


class DataQualityIssue(BaseModel):
    entity: str
    entity_id: str
    issue: str
    severity: str = "data_quality"


def detect_outliers(values: Sequence[float]) -> tuple[float, float, list[float]]:
    """
    Mean, population stddev and the values strictly more than 3 sigma away.
    A flat series (stddev 0) never has outliers.
    """
    avg = mean(values)
    sd = pstdev(values, avg) if len(values) > 1 else 0.0
    if sd == 0:
        return avg, sd, []
    return avg, sd, [v for v in values if abs(v - avg) > OUTLIER_SIGMAS * sd]


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def summarize_entities(snapshots: List[Dict[str, Any]]) -> tuple[list[EntitySummary], list[DataQualityIssue]]:
    """
    Group snapshot rows (as returned by db.get_snapshots_for_analysis) per entity
    and reduce each group to stats (numeric) or its distinct states (discrete).
    """
    grouped: Dict[str, Dict[str, Any]] = {}
    for snap in snapshots:
        eid = snap["entity_id"]
        g = grouped.get(eid)
        if g is None:
            g = grouped[eid] = {
                "friendly_name": snap.get("friendly_name") or eid,
                "category": snap.get("category") or "other",
                "priority": snap.get("priority") or "normal",
                "values": [],
            }
        value = snap.get("value_num")
        g["values"].append(value if value is not None else snap.get("value_str"))

    summaries: list[EntitySummary] = []
    issues: list[DataQualityIssue] = []

    for eid, g in grouped.items():
        values = g["values"]
        summary = EntitySummary(
            entity_id=eid,
            friendly_name=g["friendly_name"],
            category=g["category"],
            priority=g["priority"],
            count=len(values),
        )
        numeric = [float(v) for v in values if _is_number(v)]
        if numeric:
            avg, sd, outliers = detect_outliers(numeric)
            summary.min = min(numeric)
            summary.max = max(numeric)
            summary.avg = avg
            summary.stddev = sd
            summary.outliers = outliers
            summary.is_outlier = bool(outliers)
            if outliers:
                issues.append(DataQualityIssue(
                    entity=summary.friendly_name,
                    entity_id=eid,
                    issue=(
                        f"Value(s) {', '.join(f'{o:.1f}' for o in outliers)} are >3 std dev "
                        f"from mean ({avg:.1f} ± {sd:.1f})"
                    ),
                ))
        else:
            # distinct states, first-seen order
            summary.states = list(dict.fromkeys(str(v) for v in values if v is not None))
        summaries.append(summary)

    return summaries, issues


def format_entity_summary(s: EntitySummary) -> str:
    if s.is_numeric:
        stats = f"min: {s.min:.1f}, max: {s.max:.1f}, avg: {s.avg:.1f}"
        if s.is_outlier:
            stats += " ⚠️ POSSIBLE DATA QUALITY ISSUE"
    else:
        stats = f"states: {', '.join(s.states)}"
    return f"- {s.friendly_name} ({s.category}, {s.priority}): {stats}"


def pack_entity_summaries_for_prompt(summaries: List[EntitySummary], max_lines: int = 200) -> str:
    """
    One line per entity, most important first. Overflow is reported as a count
    so the model knows data was left out.
    """
    ordered = sorted(
        summaries,
        key=lambda s: (PRIORITY_ORDER.get(s.priority, 9), not s.is_outlier, s.category, s.friendly_name.lower()),
    )
    lines = [format_entity_summary(s) for s in ordered]
    if max_lines and len(lines) > max_lines:
        more = len(lines) - max_lines
        lines = lines[:max_lines] + [f"... (+{more} more)"]
    return "\n".join(lines)
