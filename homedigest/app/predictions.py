"""
Battery depletion estimates from stored snapshots.

Fits a least-squares line through the last 7 days of battery readings and
extrapolates the time left until the 10% floor.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from homedigest.api import db
from homedigest.app.reports import BatteryPrediction
from homedigest.app.util import round_half_up

logger = logging.getLogger("homedigest.predictions")

MS_PER_DAY = 24 * 60 * 60 * 1000
LOOKBACK_DAYS = 7
FLOOR_PCT = 10
MIN_DRAIN_PER_DAY = 0.01
ATTENTION_DAYS = 30


def linear_regression(points: Sequence[tuple[float, float]]) -> tuple[float, float]:
    """
    Ordinary least squares over (x, y) pairs; returns (slope, intercept).
    x is shifted so the first point sits at 0. Zero variance in x gives slope 0.
    """
    n = len(points)
    if n == 0:
        return 0.0, 0.0

    x0 = points[0][0]
    sum_x = sum_y = sum_xy = sum_x2 = 0.0
    for x, y in points:
        x -= x0
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_x2 += x * x

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0, sum_y / n

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def predict_battery(entity_id: str, friendly_name: str,
                    points: Sequence[tuple[float, float]]) -> BatteryPrediction | None:
    """
    ``points`` are (timestamp_ms, percent) ordered by time.
    Returns None when the series is too short, out of range, or not draining.
    """
    if len(points) < 2:
        return None

    latest = points[-1][1]
    if latest < 0 or latest > 100:
        return None

    slope, _ = linear_regression(points)
    drain_per_day = -slope * MS_PER_DAY
    if drain_per_day <= MIN_DRAIN_PER_DAY:
        # charging or flat
        return None

    days_remaining = round_half_up((latest - FLOOR_PCT) / drain_per_day) if latest > FLOOR_PCT else 0

    return BatteryPrediction(
        entity_id=entity_id,
        friendly_name=friendly_name,
        current_level=round_half_up(latest),
        drain_rate_per_day=round_half_up(drain_per_day * 10) / 10,
        days_remaining=days_remaining,
        data_points=len(points),
        needs_attention=0 < days_remaining <= ATTENTION_DAYS,
    )


def _to_ms(ts: str) -> float:
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000


def rank_predictions(predictions: Iterable[BatteryPrediction | None]) -> list[BatteryPrediction]:
    """Drop skipped entities and sort most urgent first."""
    out = [p for p in predictions if p is not None]
    out.sort(key=lambda p: p.days_remaining)
    return out


def get_battery_predictions(now: datetime | None = None) -> list[BatteryPrediction]:
    now = now or datetime.now(timezone.utc)
    start = (now - timedelta(days=LOOKBACK_DAYS)).isoformat(timespec="seconds")
    end = now.isoformat(timespec="seconds")

    predictions = []
    for ent in db.get_battery_entities():
        series = db.get_numeric_series(ent["entity_id"], start, end)
        points = [(_to_ms(ts), float(v)) for ts, v in series]
        predictions.append(predict_battery(ent["entity_id"], ent["friendly_name"] or ent["entity_id"], points))

    ranked = rank_predictions(predictions)
    logger.debug("Battery predictions: %d tracked, %d need attention",
                 len(ranked), sum(1 for p in ranked if p.needs_attention))
    return ranked
