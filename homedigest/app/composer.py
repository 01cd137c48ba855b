"""
Digest prompt composer.

Turns the profile, entity snapshots, health reports and user context into
one bounded prompt. Pure text assembly: nothing in here calls the model or
touches the network, so every branch (first run, weekly window, previous
digest, dismissals) can be checked on the returned string.

Size is bounded by cutting lines (top N issues per report, top N entity
lines, per-block character clamps), never by dropping a whole section.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from homedigest.app.policy import (
    ANALYSIS_GUIDELINES,
    DIGEST_OUTPUT_SCHEMA,
    FIRST_RUN_CLOSING,
    FIRST_RUN_INSTRUCTIONS,
    OUTPUT_DISCIPLINE,
)
from homedigest.app.reports import (
    AddonReport, AutomationReport, BatteryPrediction, FailedAutomationReport,
    HealthReports, IntegrationReport, LogReport, UpdateReport,
)
from homedigest.app.summaries import DataQualityIssue, pack_entity_summaries_for_prompt, summarize_entities

logger = logging.getLogger("homedigest.composer")

WINDOW_HOURS = {"daily": 24, "weekly": 168, "on_demand": 24}

TOP_ISSUES = 5
TOP_LOG_LINES = 5
MAX_FAILURE_LINES = 10
MAX_UPDATE_LINES = 15
MAX_BATTERY_LINES = 10
ENTITY_MAX_LINES = 200

SECTION_MAX_CHARS = 3000   # ≈ 750 tokens per health section
ENTITY_MAX_CHARS = 14000   # ≈3500 tokens
CONTEXT_MAX_CHARS = 2000   # ≈ 500 tokens for the previous digest
DATA_MAX_CHARS = 36000     # ≈9000 tokens for everything above the instructions


def analysis_window(digest_type: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Trailing window ending at ``now`` (wall clock, not aligned to midnight)."""
    now = now or datetime.now(timezone.utc)
    hours = WINDOW_HOURS.get(digest_type, 24)
    return now - timedelta(hours=hours), now


def clamp_chars(text: str, max_chars: int) -> str:
    """Trim on line boundaries to max_chars and annotate if truncated."""
    t = text or ""
    if len(t) <= max_chars:
        return t
    used = 0
    out: list[str] = []
    for line in t.splitlines():
        ln = len(line) + 1
        if used + ln > max_chars:
            break
        out.append(line)
        used += ln
    out.append("… [truncated]")
    return "\n".join(out)


def _section(title: str, lines: List[str]) -> str:
    if not lines:
        return ""
    return clamp_chars(f"## {title}\n" + "\n".join(lines), SECTION_MAX_CHARS)


def _more(total: int, shown: int) -> List[str]:
    return [f"- ... and {total - shown} more"] if total > shown else []


# ---------------- Profile ----------------

def render_profile(profile: Dict[str, Any]) -> str:
    def field(key: str, label: str) -> str:
        value = profile.get(key)
        if value in (None, "", [], {}):
            return f"- {label}: Not specified"
        if not isinstance(value, str):
            value = json.dumps(value, ensure_ascii=False)
        return f"- {label}: {value}"

    lines = [
        field("occupants", "Occupants"),
        field("schedule", "Schedule"),
        field("priorities", "Priorities"),
    ]
    if profile.get("concerns"):
        lines.append(f"- Concerns: {profile['concerns']}")
    return "## Home Profile\n" + "\n".join(lines)


# ---------------- Health sections ----------------

def render_addon_section(report: AddonReport) -> str:
    if report.total <= 0:
        return ""
    unexpected = report.unexpectedly_stopped
    intentional = report.intentionally_stopped
    lines = [f"Total: {report.total} add-ons ({report.running} running, {report.stopped} stopped)"]
    if unexpected:
        lines.append("⚠️ Unexpectedly stopped (boot=auto): " + ", ".join(a.name for a in unexpected))
    if intentional:
        lines.append("Intentionally stopped (boot=manual): " + ", ".join(a.name for a in intentional))
    if report.update_available > 0:
        lines.append(f"Updates available: {report.update_available}")
    # unexpected stops are already listed above
    others = [i for i in report.issues if i.kind != "unexpected_stop"]
    lines += [f"- ⚠️ {i.addon}: {i.issue}" for i in others[:TOP_ISSUES]]
    lines += _more(len(others), TOP_ISSUES)
    return _section("Add-on Status", lines)


def render_automation_section(report: AutomationReport) -> str:
    if report.total <= 0:
        return ""
    lines = [f"Total: {report.total} automations ({report.enabled} enabled, {report.disabled} disabled)"]
    for i in report.issues[:TOP_ISSUES]:
        tag = " (informational)" if i.severity == "info" else ""
        lines.append(f"- {i.name}: {i.issue}{tag}")
    lines += _more(len(report.issues), TOP_ISSUES)
    return _section("Automation Health", lines)


def render_integration_section(report: IntegrationReport) -> str:
    if not report.issues:
        return ""
    lines = [f"{report.failed} of {report.total} integrations have issues:"]
    lines += [f"- {i.name} ({i.domain}): {i.issue}" for i in report.issues[:TOP_ISSUES]]
    lines += _more(len(report.issues), TOP_ISSUES)
    return _section("Integration Issues", lines)


def render_battery_section(predictions: List[BatteryPrediction]) -> str:
    if not predictions:
        return ""
    lines = []
    for b in predictions[:MAX_BATTERY_LINES]:
        warning = " ⚠️ NEEDS ATTENTION" if b.needs_attention else ""
        lines.append(
            f"- {b.friendly_name}: {b.current_level}% (draining ~{b.drain_rate_per_day}%/day, "
            f"~{b.days_remaining} days remaining){warning}"
        )
    lines += _more(len(predictions), MAX_BATTERY_LINES)
    return _section("Battery Predictions", lines)


def render_log_section(report: LogReport) -> str:
    if not report.analyzed:
        return ""
    lines: list[str] = []
    if report.errors:
        lines.append(f"### Recent Errors ({len(report.errors)})")
        lines += [f"- [{e.source}] {e.message}" + (f" (x{e.count})" if e.count > 1 else "")
                  for e in report.errors[:TOP_LOG_LINES]]
    if report.warnings:
        lines.append(f"### Recent Warnings ({len(report.warnings)})")
        lines += [f"- [{w.source}] {w.message}" + (f" (x{w.count})" if w.count > 1 else "")
                  for w in report.warnings[:TOP_LOG_LINES]]
    if report.notable:
        lines.append("### Noisy Log Sources")
        lines += [f"- [{n.source}] repeated {n.count} times: {n.message}" for n in report.notable[:TOP_LOG_LINES]]
    if not lines:
        return "## Logs\nLog analysis complete. No critical errors or warnings found in the recent logs."
    return _section("Recent Log Issues", lines)


def render_update_section(report: UpdateReport) -> str:
    if not report.has_updates:
        return ""
    lines = []
    for u in report.updates[:MAX_UPDATE_LINES]:
        if u.current and u.available:
            lines.append(f"- {u.name}: {u.current} -> {u.available}")
        else:
            lines.append(f"- {u.name}")
    lines += _more(len(report.updates), MAX_UPDATE_LINES)
    return _section("Available Updates", lines)


def render_failed_automation_section(report: FailedAutomationReport) -> str:
    if not report.failures:
        return ""
    lines = ["The following automations triggered but encountered errors:"]
    lines += [f"- {f.name}: Failed {f.hours_ago}h ago - {f.error}" for f in report.failures[:MAX_FAILURE_LINES]]
    lines += _more(len(report.failures), MAX_FAILURE_LINES)
    return _section("Failed Automations (Last 24h)", lines)


def render_data_quality_section(issues: List[DataQualityIssue]) -> str:
    if not issues:
        return ""
    lines = ["These values appear to be statistical outliers and may indicate sensor glitches:"]
    lines += [f"- {dq.entity} ({dq.entity_id}): {dq.issue}" for dq in issues[:TOP_ISSUES * 2]]
    lines.append('Use severity "data_quality" for these, not "warning" or "critical".')
    return _section("Potential Data Quality Issues", lines)


# ---------------- User context ----------------

def render_previous_digest(previous: Optional[Dict[str, Any]], digest_type: str) -> str:
    if not previous:
        return ""
    prev_obs = previous.get("observations") or []
    prev_items = previous.get("attention_items") or []
    if not prev_obs and not prev_items:
        return ""

    label = "Last Week" if digest_type == "weekly" else "Yesterday"
    titles = ", ".join(str(i.get("title", "")) for i in prev_items if isinstance(i, dict)) or "(none)"
    obs_lines = [
        f'  - "{o.get("title", "")}": {o.get("description", "")}'
        for o in prev_obs if isinstance(o, dict)
    ]
    body = (
        f"## Previous Digest ({label})\n"
        "Here is what you reported last time:\n"
        f"- **Previous Attention Items**: {titles}\n"
        "- **Previous Observations**:\n"
        + ("\n".join(obs_lines) if obs_lines else "  (none)")
        + "\n\nUSE THIS TO REDUCE NOISE:\n"
        "- If an observation is exactly the same as last time and hasn't worsened, move it to \"housekeeping\".\n"
        "- If an issue persists but isn't critical, consider if it's \"stable\"."
    )
    return clamp_chars(body, CONTEXT_MAX_CHARS)


def render_dismissed(dismissed: List[Dict[str, Any]]) -> str:
    titles = [d.get("title") or d.get("warning_key") for d in dismissed]
    titles = [t for t in titles if t]
    if not titles:
        return ""
    # never clamped: the whole exclusion list goes in
    return (
        "## DISMISSED WARNINGS - DO NOT INCLUDE THESE:\n"
        "The user has dismissed the following warnings. DO NOT include any attention_items "
        "with these titles or similar topics:\n"
        + "\n".join(f'- "{t}"' for t in titles)
    )


def render_notes(notes: List[Dict[str, Any]]) -> str:
    lines = [f'- "{n.get("title", "")}": {n.get("note", "")}' for n in notes if n.get("note")]
    if not lines:
        return ""
    return (
        "## USER PREFERENCES - TAKE THESE INTO ACCOUNT:\n"
        "The user has added personal notes to help you understand their preferences. "
        "Consider these when analyzing:\n"
        + "\n".join(lines)
        + "\n\nFor example, if a user notes \"I don't update AdGuard Home\", do NOT flag AdGuard updates "
        "as attention items."
    )


# ---------------- Assembly ----------------

def build_digest_prompt(
    *,
    digest_type: str,
    profile: Dict[str, Any],
    entities: List[Dict[str, Any]],
    entity_stats: List[Dict[str, Any]],
    snapshots: List[Dict[str, Any]],
    reports: HealthReports | None = None,
    dismissed: List[Dict[str, Any]] | None = None,
    notes: List[Dict[str, Any]] | None = None,
    previous_digest: Optional[Dict[str, Any]] = None,
    language: str | None = None,
) -> str:
    reports = reports or HealthReports()
    first_run = len(snapshots) == 0
    period = "past week" if digest_type == "weekly" else "past 24 hours"

    summaries, dq_issues = summarize_entities(snapshots)
    if summaries:
        entity_block = clamp_chars(pack_entity_summaries_for_prompt(summaries, ENTITY_MAX_LINES), ENTITY_MAX_CHARS)
    else:
        entity_block = "No snapshot data available yet - this is expected for a new setup."

    data_parts = [
        FIRST_RUN_INSTRUCTIONS if first_run else "",
        render_profile(profile),
        "## Entity Overview\n"
        f"Total monitored: {len(entities)} entities across {len(entity_stats)} categories",
        render_addon_section(reports.addons),
        render_automation_section(reports.automations),
        render_integration_section(reports.integrations),
        render_battery_section(reports.batteries),
        render_log_section(reports.logs),
        render_update_section(reports.updates),
        render_failed_automation_section(reports.failed_automations),
        render_data_quality_section(dq_issues),
        render_previous_digest(previous_digest, digest_type),
    ]
    # the entity section is never cut; the sections above absorb the overflow
    entity_section = f"## Data from {period}\n{entity_block}"
    head = clamp_chars("\n\n".join(p for p in data_parts if p), DATA_MAX_CHARS - len(entity_section) - 2)
    data = head + "\n\n" + entity_section

    instruction_parts = [
        "## Your Task\nAnalyze the data and return a JSON object with the following structure:\n\n"
        + DIGEST_OUTPUT_SCHEMA,
        ANALYSIS_GUIDELINES,
        render_dismissed(dismissed or []),
        render_notes(notes or []),
        FIRST_RUN_CLOSING if first_run else "",
        f"Write every text field in language: {language}." if language and language != "en" else "",
        OUTPUT_DISCIPLINE,
    ]
    instructions = "\n\n".join(p for p in instruction_parts if p)

    prompt = data + "\n\n" + instructions
    logger.info(
        "Digest prompt (%s): %d chars, %d snapshots, %d entities summarized, first_run=%s",
        digest_type, len(prompt), len(snapshots), len(summaries), first_run,
    )
    return prompt
