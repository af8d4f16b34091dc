"""Data models for the 3CX WLED bridge."""

import hashlib
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Status(str, Enum):
    """Presence status vocabulary shared by the scraper, the core and the LED."""

    AVAILABLE = "available"
    RINGING = "ringing"
    ON_CALL = "onCall"
    DND = "dnd"
    AWAY = "away"
    OFFLINE = "offline"


class StatsSource(str, Enum):
    """Where a CallStats snapshot came from."""

    SCRAPED = "scraped"
    MANUAL = "manual"
    DEFAULT = "default"
    ERROR = "error"


class Trigger(str, Enum):
    """What started a collection cycle."""

    INITIAL = "initial"
    INTERVAL = "interval"
    OBSERVER = "observer"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the dashboard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Color(BaseModel):
    """RGB triple."""

    model_config = ConfigDict(frozen=True)

    r: int = Field(ge=0, le=255)
    g: int = Field(ge=0, le=255)
    b: int = Field(ge=0, le=255)

    def as_list(self) -> List[int]:
        return [self.r, self.g, self.b]


class CallStats(CamelModel):
    """Queue statistics snapshot."""

    waiting_calls: int = Field(default=0, ge=0)
    active_calls: int = Field(default=0, ge=0)
    total_calls: int = Field(default=0, ge=0)
    serviced_calls: int = Field(default=0, ge=0)
    abandoned_calls: int = Field(default=0, ge=0)
    longest_waiting: Optional[str] = None
    average_waiting: Optional[str] = None
    average_talking: Optional[str] = None
    last_updated: datetime = Field(default_factory=datetime.now)
    source: StatsSource = StatsSource.DEFAULT

    @classmethod
    def zeroed(cls, source: StatsSource = StatsSource.DEFAULT) -> "CallStats":
        return cls(source=source)


class AgentEntry(CamelModel):
    """One team member on the roster."""

    id: str
    extension: str
    name: str = Field(min_length=1)
    status: Status = Status.OFFLINE
    queues: str = ""
    color: str = "gray"

    @property
    def queue_count(self) -> int:
        return len([q for q in self.queues.split(",") if q.strip()])

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        data["queueCount"] = self.queue_count
        return data


class StatusResult(CamelModel):
    """The current user's own status as read from the page."""

    status: Status = Status.AVAILABLE
    source: str = "default"


class Snapshot(CamelModel):
    """One internally consistent read of status, stats and roster."""

    status: StatusResult = Field(default_factory=StatusResult)
    call_stats: Optional[CallStats] = None
    agent_statuses: Optional[List[AgentEntry]] = None
    trigger: Trigger = Trigger.INTERVAL
    captured_at: datetime = Field(default_factory=datetime.now)
    auth_required: bool = False
    error: Optional[str] = None

    def fingerprint(self) -> str:
        """Hash of the snapshot content, ignoring timestamps and trigger."""
        payload = self.model_dump_json(
            exclude={
                "captured_at": True,
                "trigger": True,
                "call_stats": {"last_updated"},
            }
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_wire(self) -> Dict[str, Any]:
        data = super().to_wire()
        if self.agent_statuses is not None:
            data["agentStatuses"] = [agent.to_wire() for agent in self.agent_statuses]
        return data


class ManualOverride(CamelModel):
    """A human-submitted status that takes precedence for a limited time."""

    active: bool = False
    timestamp: Optional[datetime] = None
    timeout_duration: timedelta = timedelta(minutes=15)

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        if not self.active or self.timestamp is None:
            return 0
        now = now or datetime.now()
        remaining = self.timeout_duration - (now - self.timestamp)
        return max(0, round(remaining.total_seconds()))

    def expired(self, now: Optional[datetime] = None) -> bool:
        return self.active and self.remaining_seconds(now) == 0


class ApplicationState(BaseModel):
    """Canonical in-process state, owned by the ReconciliationCore."""

    current_status: Status = Status.OFFLINE
    detected_status: Optional[StatusResult] = None
    is_monitoring: bool = True
    latest_call_stats: CallStats = Field(default_factory=CallStats.zeroed)
    roster: List[AgentEntry] = Field(default_factory=list)
    roster_updated_at: Optional[datetime] = None
    manual_override: ManualOverride = Field(default_factory=ManualOverride)
    last_snapshot_hash: Optional[str] = None
    last_snapshot_at: Optional[datetime] = None
    device_connected: Optional[bool] = None
    device_error: Optional[str] = None
    authenticated: bool = False
    last_debug_info: Dict[str, Any] = Field(default_factory=dict)


class DeviceState(BaseModel):
    """Subset of the WLED JSON state that the bridge cares about."""

    on: bool = False
    bri: int = 0
    color: Optional[Color] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DeviceState":
        # GET /json nests the live state under "state"; POST responses do not
        state = data.get("state", data)
        color = None
        segments = state.get("seg") or []
        if segments:
            cols = segments[0].get("col") or []
            if cols and len(cols[0]) >= 3:
                r, g, b = cols[0][:3]
                color = Color(r=r, g=g, b=b)
        return cls(on=bool(state.get("on", False)), bri=int(state.get("bri", 0)), color=color, raw=data)


class RawSignal(BaseModel):
    """Status-bearing signals read from one page element."""

    selector: str = ""
    class_names: List[str] = Field(default_factory=list)
    text: str = ""
    attributes: Dict[str, str] = Field(default_factory=dict)
    # Element sits inside the team roster, so it is a colleague's status
    in_roster: bool = False


class QueueStatTable(BaseModel):
    """Header and data cells of the queue statistics table."""

    headers: List[str] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)


class RawAgentItem(BaseModel):
    """Unparsed fields of one roster item."""

    number_text: str = ""
    name_title: Optional[str] = None
    name_text: str = ""
    queues: str = ""
    indicator_classes: List[str] = Field(default_factory=list)


class PageProbe(BaseModel):
    """Login-related facts about the current page."""

    url: str = ""
    title: str = ""
    login_form: bool = False
    logged_in_markers: bool = False
    auth_token_key: bool = False
    on_status_view: bool = False
