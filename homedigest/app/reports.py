"""
Typed health reports, one model per collector.

Every field has a default so that ``Model()`` is the zero value the
aggregator substitutes when a collector fails. The composer omits a
section whose report is empty.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


# ---------- Add-ons ----------

class AddonInfo(BaseModel):
    name: str
    slug: str = ""
    state: str = "unknown"          # started|stopped|error|unknown
    boot: str = "auto"              # auto|manual
    update_available: bool = False
    version: Optional[str] = None
    version_latest: Optional[str] = None
    cpu_percent: Optional[float] = None


class AddonIssue(BaseModel):
    addon: str
    issue: str
    severity: str = "warning"
    kind: str = "other"             # unexpected_stop|high_cpu|error_state|other


class AddonReport(BaseModel):
    total: int = 0
    running: int = 0
    stopped: int = 0
    update_available: int = 0
    addons: List[AddonInfo] = Field(default_factory=list)
    issues: List[AddonIssue] = Field(default_factory=list)

    @property
    def unexpectedly_stopped(self) -> List[AddonInfo]:
        return [a for a in self.addons if a.state != "started" and a.boot == "auto"]

    @property
    def intentionally_stopped(self) -> List[AddonInfo]:
        return [a for a in self.addons if a.state != "started" and a.boot == "manual"]


# ---------- Automations ----------

class AutomationIssue(BaseModel):
    name: str
    entity_id: str = ""
    issue: str
    severity: str = "info"


class AutomationReport(BaseModel):
    total: int = 0
    enabled: int = 0
    disabled: int = 0
    issues: List[AutomationIssue] = Field(default_factory=list)


# ---------- Integrations ----------

class IntegrationIssue(BaseModel):
    name: str
    domain: str = ""
    issue: str
    severity: str = "warning"


class IntegrationReport(BaseModel):
    total: int = 0
    failed: int = 0
    issues: List[IntegrationIssue] = Field(default_factory=list)


# ---------- Logs ----------

class LogEntry(BaseModel):
    source: str = "unknown"
    message: str
    level: str = "WARNING"
    count: int = 1


class LogReport(BaseModel):
    analyzed: bool = False
    errors: List[LogEntry] = Field(default_factory=list)
    warnings: List[LogEntry] = Field(default_factory=list)
    notable: List[LogEntry] = Field(default_factory=list)


# ---------- Updates ----------

class UpdateInfo(BaseModel):
    name: str
    entity_id: str = ""
    current: Optional[str] = None
    available: Optional[str] = None


class UpdateReport(BaseModel):
    updates: List[UpdateInfo] = Field(default_factory=list)

    @property
    def has_updates(self) -> bool:
        return bool(self.updates)


# ---------- Failed automations ----------

class AutomationFailure(BaseModel):
    name: str
    entity_id: str = ""
    error: str = "unknown error"
    hours_ago: int = 0


class FailedAutomationReport(BaseModel):
    failures: List[AutomationFailure] = Field(default_factory=list)


# ---------- Batteries ----------

class BatteryPrediction(BaseModel):
    entity_id: str
    friendly_name: str
    current_level: int
    drain_rate_per_day: float
    days_remaining: int
    data_points: int
    needs_attention: bool = False


# ---------- Aggregate ----------

class HealthReports(BaseModel):
    """Everything the collectors produced for one digest run."""
    addons: AddonReport = Field(default_factory=AddonReport)
    automations: AutomationReport = Field(default_factory=AutomationReport)
    integrations: IntegrationReport = Field(default_factory=IntegrationReport)
    logs: LogReport = Field(default_factory=LogReport)
    updates: UpdateReport = Field(default_factory=UpdateReport)
    failed_automations: FailedAutomationReport = Field(default_factory=FailedAutomationReport)
    batteries: List[BatteryPrediction] = Field(default_factory=list)
