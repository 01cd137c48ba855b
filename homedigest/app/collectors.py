"""
Health collectors.

Each ``collect_*`` coroutine talks to Home Assistant and returns one typed
report. ``gather_health_reports`` runs them all concurrently; a collector
that raises is logged and replaced by its empty report so that a single
broken endpoint never blocks the digest.
"""

import re
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from homedigest.app.predictions import get_battery_predictions
from homedigest.app.reports import (
    AddonInfo, AddonIssue, AddonReport,
    AutomationIssue, AutomationReport,
    IntegrationIssue, IntegrationReport,
    LogEntry, LogReport,
    UpdateInfo, UpdateReport,
    AutomationFailure, FailedAutomationReport,
    HealthReports,
)

logger = logging.getLogger("homedigest.collectors")

HIGH_CPU_PCT = 80.0
STALE_AUTOMATION_DAYS = 30
FAILED_AUTOMATION_HOURS = 24

LOG_DEDUP_CHARS = 80
MAX_LOG_ERRORS = 10
MAX_LOG_WARNINGS = 10
MAX_LOG_NOTABLE = 5
NOTABLE_REPEAT_COUNT = 25

# integration entry states that mean "not working"
_BROKEN_ENTRY_STATES = {
    "setup_error": "critical",
    "migration_error": "critical",
    "failed_unload": "critical",
    "setup_retry": "warning",
}


def _parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _friendly(state: dict) -> str:
    return (state.get("attributes") or {}).get("friendly_name") or state.get("entity_id", "")


# ---------------- Add-ons ----------------

async def collect_addon_report(ha) -> AddonReport:
    addons = await ha.addons()
    report = AddonReport(total=len(addons))

    for a in addons:
        slug = a.get("slug", "")
        info: dict = {}
        if slug:
            try:
                info = await ha.addon_info(slug) or {}
            except Exception as e:
                logger.warning("No info for add-on %s, assuming boot=auto: %s", slug, e)
        addon = AddonInfo(
            name=a.get("name") or slug,
            slug=slug,
            state=a.get("state") or info.get("state") or "unknown",
            boot=info.get("boot") or "auto",
            update_available=bool(a.get("update_available")),
            version=a.get("version"),
            version_latest=a.get("version_latest"),
        )

        if addon.state == "started":
            report.running += 1
            try:
                stats = await ha.addon_stats(slug)
                addon.cpu_percent = stats.get("cpu_percent")
            except Exception as e:
                # stats are optional; some add-ons don't expose them
                logger.debug("No stats for add-on %s: %s", slug, e)
            if addon.cpu_percent is not None and addon.cpu_percent > HIGH_CPU_PCT:
                report.issues.append(AddonIssue(
                    addon=addon.name,
                    issue=f"High CPU usage ({addon.cpu_percent:.0f}%)",
                    severity="warning",
                    kind="high_cpu",
                ))
        else:
            report.stopped += 1
            if addon.state == "error":
                report.issues.append(AddonIssue(
                    addon=addon.name, issue="Add-on is in an error state",
                    severity="critical", kind="error_state",
                ))
            elif addon.boot == "auto":
                report.issues.append(AddonIssue(
                    addon=addon.name, issue="Stopped but configured to auto-start",
                    severity="warning", kind="unexpected_stop",
                ))

        if addon.update_available:
            report.update_available += 1
        report.addons.append(addon)

    return report


# ---------------- Automations ----------------

def build_automation_report(states: list[dict], now: datetime) -> AutomationReport:
    report = AutomationReport()
    stale_before = now - timedelta(days=STALE_AUTOMATION_DAYS)

    for s in states:
        eid = s.get("entity_id", "")
        if not eid.startswith("automation."):
            continue
        report.total += 1
        state = s.get("state")
        name = _friendly(s)

        if state == "unavailable":
            report.disabled += 1
            report.issues.append(AutomationIssue(
                name=name, entity_id=eid,
                issue="Automation is unavailable (configuration error?)", severity="warning",
            ))
            continue
        if state != "on":
            report.disabled += 1
            continue

        report.enabled += 1
        last = _parse_iso((s.get("attributes") or {}).get("last_triggered"))
        if last is None:
            report.issues.append(AutomationIssue(
                name=name, entity_id=eid, issue="Enabled but has never triggered", severity="info",
            ))
        elif last < stale_before:
            days = int((now - last).total_seconds() // 86400)
            report.issues.append(AutomationIssue(
                name=name, entity_id=eid, issue=f"Not triggered in {days} days", severity="info",
            ))

    # warnings first so the top-5 cut in the prompt keeps them
    report.issues.sort(key=lambda i: 0 if i.severity == "warning" else 1)
    return report


async def collect_automation_report(ha, now: datetime | None = None) -> AutomationReport:
    states = await ha.states()
    return build_automation_report(states, now or datetime.now(timezone.utc))


# ---------------- Integrations ----------------

def build_integration_report(entries: list[dict]) -> IntegrationReport:
    report = IntegrationReport()
    for e in entries:
        if e.get("disabled_by"):
            continue
        report.total += 1
        state = e.get("state") or ""
        if state not in _BROKEN_ENTRY_STATES:
            continue
        reason = e.get("reason")
        issue = state.replace("_", " ")
        if reason:
            issue += f": {reason}"
        report.issues.append(IntegrationIssue(
            name=e.get("title") or e.get("domain") or "unknown",
            domain=e.get("domain") or "",
            issue=issue,
            severity=_BROKEN_ENTRY_STATES[state],
        ))
    report.failed = len(report.issues)
    report.issues.sort(key=lambda i: 0 if i.severity == "critical" else 1)
    return report


async def collect_integration_report(ha) -> IntegrationReport:
    return build_integration_report(await ha.config_entries())


# ---------------- Logs ----------------

_HEX_RE = re.compile(r"\b0x[0-9a-f]+\b|\b[0-9a-f]{8,}\b")
_DIGITS_RE = re.compile(r"\d+")
_WS_RE = re.compile(r"\s+")


def normalize_log_message(message: Any) -> str:
    """Collapse volatile parts (ids, numbers, spacing) so repeats compare equal."""
    if isinstance(message, (list, tuple)):
        message = " ".join(str(m) for m in message)
    text = str(message or "").lower()
    text = _HEX_RE.sub("<id>", text)
    text = _DIGITS_RE.sub("#", text)
    return _WS_RE.sub(" ", text).strip()


def _log_source(entry: dict) -> str:
    src = entry.get("source")
    if isinstance(src, (list, tuple)) and src:
        src = src[0]
    return entry.get("name") or (str(src) if src else "unknown")


def build_log_report(entries: list[dict]) -> LogReport:
    report = LogReport(analyzed=True)
    buckets: dict[str, dict[str, LogEntry]] = {"errors": {}, "warnings": {}}
    repeats: dict[str, LogEntry] = {}

    for e in entries:
        level = str(e.get("level") or "WARNING").upper()
        raw = e.get("message")
        if isinstance(raw, (list, tuple)):
            raw = raw[0] if raw else ""
        message = str(raw or "").strip()
        if not message:
            continue
        key = normalize_log_message(message)[:LOG_DEDUP_CHARS]
        count = int(e.get("count") or 1)

        if level in ("ERROR", "CRITICAL", "FATAL"):
            bucket = buckets["errors"]
        elif level == "WARNING":
            bucket = buckets["warnings"]
        else:
            bucket = None

        if bucket is not None:
            if key in bucket:
                bucket[key].count += count
            else:
                bucket[key] = LogEntry(source=_log_source(e), message=message[:300], level=level, count=count)

        if key in repeats:
            repeats[key].count += count
        else:
            repeats[key] = LogEntry(source=_log_source(e), message=message[:300], level=level, count=count)

    def top(items, limit):
        return sorted(items, key=lambda x: x.count, reverse=True)[:limit]

    report.errors = top(buckets["errors"].values(), MAX_LOG_ERRORS)
    report.warnings = top(buckets["warnings"].values(), MAX_LOG_WARNINGS)
    report.notable = top((r for r in repeats.values() if r.count >= NOTABLE_REPEAT_COUNT), MAX_LOG_NOTABLE)
    return report


async def collect_log_report(ha) -> LogReport:
    return build_log_report(await ha.system_log())


# ---------------- Updates ----------------

def build_update_report(states: list[dict]) -> UpdateReport:
    report = UpdateReport()
    for s in states:
        eid = s.get("entity_id", "")
        if not eid.startswith("update.") or s.get("state") != "on":
            continue
        attrs = s.get("attributes") or {}
        report.updates.append(UpdateInfo(
            name=attrs.get("title") or _friendly(s),
            entity_id=eid,
            current=attrs.get("installed_version"),
            available=attrs.get("latest_version"),
        ))
    return report


async def collect_update_report(ha) -> UpdateReport:
    return build_update_report(await ha.states())


# ---------------- Failed automations ----------------

def build_failed_automation_report(traces: list[dict], states: list[dict], now: datetime) -> FailedAutomationReport:
    # trace item_id is the automation's config id, not its entity_id
    by_config_id = {}
    for s in states:
        eid = s.get("entity_id", "")
        if eid.startswith("automation."):
            cid = (s.get("attributes") or {}).get("id")
            if cid:
                by_config_id[str(cid)] = s

    cutoff = now - timedelta(hours=FAILED_AUTOMATION_HOURS)
    latest: dict[str, AutomationFailure] = {}
    latest_ts: dict[str, datetime] = {}

    for t in traces:
        error = t.get("error")
        if t.get("script_execution") != "error" and not error:
            continue
        started = _parse_iso((t.get("timestamp") or {}).get("start"))
        if started is None or started < cutoff:
            continue
        item_id = str(t.get("item_id") or "")
        if item_id in latest_ts and latest_ts[item_id] >= started:
            continue
        st = by_config_id.get(item_id) or {}
        latest_ts[item_id] = started
        latest[item_id] = AutomationFailure(
            name=_friendly(st) if st else (item_id or "unknown automation"),
            entity_id=st.get("entity_id", ""),
            error=str(error or "execution error"),
            hours_ago=int(round((now - started).total_seconds() / 3600)),
        )

    failures = sorted(latest.values(), key=lambda f: f.hours_ago)
    return FailedAutomationReport(failures=failures)


async def collect_failed_automations(ha, now: datetime | None = None) -> FailedAutomationReport:
    traces, states = await asyncio.gather(ha.automation_traces(), ha.states())
    return build_failed_automation_report(traces, states, now or datetime.now(timezone.utc))


# ---------------- Batteries ----------------

async def collect_battery_predictions(now: datetime | None = None):
    return get_battery_predictions(now)


# ---------------- Aggregation ----------------

async def _isolated(name: str, factory: Callable[[], Awaitable[Any]], default: Callable[[], Any]):
    try:
        return await factory()
    except Exception:
        logger.exception("Collector %s failed; continuing without it", name)
        return default()


async def gather_health_reports(ha, now: datetime | None = None) -> HealthReports:
    """Run every collector concurrently; failures become empty reports."""
    now = now or datetime.now(timezone.utc)
    (addons, automations, integrations, logs, updates, failed, batteries) = await asyncio.gather(
        _isolated("addons", lambda: collect_addon_report(ha), AddonReport),
        _isolated("automations", lambda: collect_automation_report(ha, now), AutomationReport),
        _isolated("integrations", lambda: collect_integration_report(ha), IntegrationReport),
        _isolated("logs", lambda: collect_log_report(ha), LogReport),
        _isolated("updates", lambda: collect_update_report(ha), UpdateReport),
        _isolated("failed_automations", lambda: collect_failed_automations(ha, now), FailedAutomationReport),
        _isolated("batteries", lambda: collect_battery_predictions(now), list),
    )

    logger.info(
        "Health: add-ons=%d (%d issues) automations=%d (%d issues) integrations failed=%d "
        "log errors=%d warnings=%d updates=%d failed automations=%d batteries=%d",
        addons.total, len(addons.issues), automations.total, len(automations.issues),
        integrations.failed, len(logs.errors), len(logs.warnings), len(updates.updates),
        len(failed.failures), len(batteries),
    )
    return HealthReports(
        addons=addons,
        automations=automations,
        integrations=integrations,
        logs=logs,
        updates=updates,
        failed_automations=failed,
        batteries=batteries,
    )
