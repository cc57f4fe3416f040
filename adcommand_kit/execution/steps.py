"""
Step Registry: the per-run timeline of platform mutations.

One ExecutionStep per logical key ("campaign", "adset", "ad", "campaign_preflight",
"tool:<name>"). A retry re-enters the same step and bumps its attempts. A terminal
step (success/error) is never reopened; another call of the same kind after that
opens a fresh key ("ad:2", "ad:3", ...), which is how multi-ad runs get one step per ad.
"""

from __future__ import annotations
import itertools
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from adcommand_kit.integrations.facebook.utils import humanize_tool_name


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCESS = "success"
    ERROR = "error"


class StepType(str, Enum):
    CAMPAIGN = "campaign"
    ADSET = "adset"
    AD = "ad"
    VALIDATION = "validation"


TERMINAL_STATUSES = {StepStatus.SUCCESS, StepStatus.ERROR}
PRIMARY_TYPES = (StepType.CAMPAIGN, StepType.ADSET, StepType.AD)


class StepTransitionError(Exception):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ExecutionStep(_CamelModel):
    id: str
    key: str
    order: int
    title: str
    type: StepType
    status: StepStatus = StepStatus.RUNNING
    summary: str = ""
    user_title: Optional[str] = None
    user_message: Optional[str] = None
    next_steps: Optional[List[str]] = None
    rationale: Optional[str] = None
    technical_details: Optional[str] = None
    fixes_applied: List[str] = Field(default_factory=list)
    attempts: int = 1
    started_at: str = Field(default_factory=_now_iso)
    finished_at: Optional[str] = None
    created_ids: Optional[Dict[str, Any]] = None
    meta: Optional[Dict[str, Any]] = None
    debug: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class StepDescriptor:
    key: str
    type: StepType
    title: str
    order: int


PREFLIGHT_TOOL = "preflight_create_campaign_bundle"


def step_descriptor(tool_name: str) -> StepDescriptor:
    if tool_name == "create_campaign":
        return StepDescriptor("campaign", StepType.CAMPAIGN, "Campaign Creation", 1)
    if tool_name == "create_adset":
        return StepDescriptor("adset", StepType.ADSET, "Ad Set Creation", 2)
    if tool_name == "create_ad":
        return StepDescriptor("ad", StepType.AD, "Ad Creation", 3)
    if tool_name == PREFLIGHT_TOOL:
        return StepDescriptor("campaign_preflight", StepType.VALIDATION, "Campaign Validation", 0)
    return StepDescriptor(f"tool:{tool_name}", StepType.VALIDATION, humanize_tool_name(tool_name), 4)


def _unique_text(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for v in values:
        t = (v or "").strip()
        if not t or t in seen:
            continue
        seen.add(t)
        result.append(t)
    return result


class StepRegistry:
    def __init__(self):
        self._steps: Dict[str, ExecutionStep] = {}
        self._latest: Dict[str, str] = {}   # base key -> current key
        self._counts: Dict[str, int] = {}
        self._seq: Dict[str, int] = {}
        self._counter = itertools.count()

    def register_attempt(self, descriptor: StepDescriptor, summary: str, meta: Optional[Dict[str, Any]] = None) -> Tuple[ExecutionStep, bool]:
        """
        Open a step for this descriptor or re-enter the live one. Returns (step, is_new).
        """
        current_key = self._latest.get(descriptor.key)
        step = self._steps.get(current_key) if current_key else None
        if step is not None and not step.is_terminal:
            step.status = StepStatus.RUNNING
            step.summary = summary
            step.attempts += 1
            step.finished_at = None
            if meta:
                step.meta = {**(step.meta or {}), **meta}
            return step, False

        n = self._counts.get(descriptor.key, 0) + 1
        self._counts[descriptor.key] = n
        key = descriptor.key if n == 1 else f"{descriptor.key}:{n}"
        title = descriptor.title if n == 1 else f"{descriptor.title} {n}"
        step = ExecutionStep(
            id=f"{key}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}",
            key=key,
            order=descriptor.order,
            title=title,
            type=descriptor.type,
            status=StepStatus.RUNNING,
            summary=summary,
            attempts=1,
            meta=dict(meta) if meta else None,
        )
        self._steps[key] = step
        self._latest[descriptor.key] = key
        self._seq[key] = next(self._counter)
        return step, True

    def record_resumed(self, descriptor: StepDescriptor, summary: str, created_ids: Dict[str, Any]) -> ExecutionStep:
        step, _ = self.register_attempt(descriptor, summary, meta={"resumed": True})
        return self.mark_success(step.key, summary=summary, created_ids=created_ids)

    def get(self, key: str) -> Optional[ExecutionStep]:
        return self._steps.get(key)

    def current(self, base_key: str) -> Optional[ExecutionStep]:
        key = self._latest.get(base_key)
        return self._steps.get(key) if key else None

    def _require_live(self, key: str) -> ExecutionStep:
        step = self._steps.get(key)
        if step is None:
            raise KeyError(f"unknown step {key!r}")
        if step.is_terminal:
            raise StepTransitionError(f"step {key!r} is already {step.status.value}")
        return step

    def append_fixes(self, key: str, fixes: List[str]) -> Optional[ExecutionStep]:
        step = self._steps.get(key)
        if step is None:
            return None
        if fixes:
            step.fixes_applied = _unique_text(step.fixes_applied + list(fixes))
        return step

    def _apply(self, step: ExecutionStep, status: StepStatus, summary: str, **fields) -> ExecutionStep:
        fixes = fields.pop("fixes_applied", None)
        meta = fields.pop("meta", None)
        step.status = status
        step.summary = summary
        for name in ("user_title", "user_message", "next_steps", "rationale", "technical_details", "debug", "created_ids"):
            setattr(step, name, fields.get(name))
        if fixes:
            step.fixes_applied = _unique_text(step.fixes_applied + list(fixes))
        if meta:
            step.meta = {**(step.meta or {}), **meta}
        if status in TERMINAL_STATUSES:
            step.finished_at = _now_iso()
        return step

    def mark_retrying(self, key: str, summary: str, **fields) -> ExecutionStep:
        return self._apply(self._require_live(key), StepStatus.RETRYING, summary, **fields)

    def mark_success(self, key: str, summary: str, **fields) -> ExecutionStep:
        return self._apply(self._require_live(key), StepStatus.SUCCESS, summary, **fields)

    def mark_error(self, key: str, summary: str, **fields) -> ExecutionStep:
        return self._apply(self._require_live(key), StepStatus.ERROR, summary, **fields)

    def enrich_meta(self, key: str, meta: Dict[str, Any]) -> Optional[ExecutionStep]:
        # Allowed on terminal steps, nothing else changes
        step = self._steps.get(key)
        if step is None:
            return None
        step.meta = {**(step.meta or {}), **meta}
        return step

    def live_steps(self) -> List[ExecutionStep]:
        return [s for s in self._steps.values() if not s.is_terminal]

    def list(self) -> List[ExecutionStep]:
        return sorted(self._steps.values(), key=lambda s: (s.order, s.started_at, self._seq[s.key]))

    def __len__(self) -> int:
        return len(self._steps)


class CreatedEntityIds(_CamelModel):
    """Ids assigned by the platform, filled only from successful tool results."""
    campaign_id: Optional[str] = None
    ad_set_id: Optional[str] = None
    ad_id: Optional[str] = None
    ad_set_ids: List[str] = Field(default_factory=list)
    ad_ids: List[str] = Field(default_factory=list)

    def record_campaign(self, campaign_id: Any) -> bool:
        if self.campaign_id or not campaign_id:
            return False
        self.campaign_id = str(campaign_id)
        return True

    def record_ad_set(self, ad_set_id: Any) -> bool:
        if self.ad_set_id or not ad_set_id:
            return False
        self.ad_set_id = str(ad_set_id)
        self.ad_set_ids.append(self.ad_set_id)
        return True

    def record_ad(self, ad_id: Any) -> bool:
        if not ad_id or str(ad_id) in self.ad_ids:
            return False
        self.ad_ids.append(str(ad_id))
        self.ad_id = str(ad_id)
        return True

    def is_empty(self) -> bool:
        return not (self.campaign_id or self.ad_set_id or self.ad_id or self.ad_set_ids or self.ad_ids)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        for k in ("adSetIds", "adIds"):
            if not d.get(k):
                d.pop(k, None)
        return d


class ExecutionSummary(_CamelModel):
    steps_completed: int
    total_steps: int
    retries: int
    final_status: str   # "success", "partial" or "error"
    final_message: str
    created_ids: Optional[Dict[str, Any]] = None


def build_execution_summary(
    steps: List[ExecutionStep],
    completed: bool,
    final_message: str,
    created_ids: Optional[CreatedEntityIds] = None,
    requested_ads: int = 1,
) -> ExecutionSummary:
    primary = [s for s in steps if s.type in PRIMARY_TYPES]
    if primary:
        total = 3
        done = 0
        for kind in PRIMARY_TYPES:
            of_kind = [s for s in primary if s.type == kind]
            if of_kind and all(s.status == StepStatus.SUCCESS for s in of_kind):
                done += 1
    else:
        total = max(1, len(steps))
        done = sum(1 for s in steps if s.status == StepStatus.SUCCESS)
    retries = sum(max(0, s.attempts - 1) for s in steps)
    has_errors = any(s.status == StepStatus.ERROR for s in steps)
    any_success = any(s.status == StepStatus.SUCCESS for s in steps)
    ads_done = sum(1 for s in primary if s.type == StepType.AD and s.status == StepStatus.SUCCESS)
    # A creation run short of any primary step or of the requested ads is not a success
    if completed and not has_errors and (not primary or (done == total and ads_done >= requested_ads)):
        final_status = "success"
    elif any_success:
        final_status = "partial"
    else:
        final_status = "error"
    return ExecutionSummary(
        steps_completed=done,
        total_steps=total,
        retries=retries,
        final_status=final_status,
        final_message=final_message,
        created_ids=created_ids.to_dict() if created_ids is not None and not created_ids.is_empty() else None,
    )
