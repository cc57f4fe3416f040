"""
Streaming Adapter.

Producer side: ExecutionEventFeed turns step transitions into an ordered list of
events, keeps the whole history for late subscribers, and closes with exactly one
terminal event (timeline.done or execution_error).

Consumer side: TimelineReducer folds events (or raw SSE text) back into steps by id,
skipping anything it doesn't understand.
"""

from __future__ import annotations
import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncGenerator, Dict, List, Optional

from pydantic import BaseModel

from adcommand_kit.execution.steps import ExecutionStep, StepStatus, StepType

logger = logging.getLogger("execution.events")


class StreamEventType(str, Enum):
    STEP_START = "step.start"
    STEP_UPDATE = "step.update"
    STEP_SUCCESS = "step.success"
    STEP_ERROR = "step.error"
    EXECUTION_SUMMARY = "execution_summary"
    TIMELINE_DONE = "timeline.done"
    EXECUTION_ERROR = "execution_error"


TERMINAL_EVENTS = {StreamEventType.TIMELINE_DONE, StreamEventType.EXECUTION_ERROR}
STEP_EVENTS = {StreamEventType.STEP_START, StreamEventType.STEP_UPDATE, StreamEventType.STEP_SUCCESS, StreamEventType.STEP_ERROR}
KNOWN_EVENT_TYPES = {t.value for t in StreamEventType}


class StreamEvent(BaseModel):
    type: StreamEventType
    run_id: str
    seq: int
    ts: float
    payload: Dict[str, Any]

    def data(self) -> Dict[str, Any]:
        return {"type": self.type.value, "runId": self.run_id, "seq": self.seq, "ts": self.ts, **self.payload}


def step_event_type(step: ExecutionStep, is_new: bool) -> StreamEventType:
    if step.status == StepStatus.SUCCESS:
        return StreamEventType.STEP_SUCCESS
    if step.status == StepStatus.ERROR:
        return StreamEventType.STEP_ERROR
    if is_new and step.attempts == 1 and step.status == StepStatus.RUNNING:
        return StreamEventType.STEP_START
    return StreamEventType.STEP_UPDATE


class ExecutionEventFeed:
    def __init__(self, run_id: str):
        self.run_id = run_id
        self.history: List[StreamEvent] = []
        self._subscribers: List[asyncio.Queue] = []
        self._seq = 0

    @property
    def closed(self) -> bool:
        return bool(self.history) and self.history[-1].type in TERMINAL_EVENTS

    def publish(self, type: StreamEventType, payload: Dict[str, Any]) -> Optional[StreamEvent]:
        if self.closed:
            logger.debug("run %s: dropping %s after terminal event", self.run_id, type.value)
            return None
        self._seq += 1
        event = StreamEvent(type=type, run_id=self.run_id, seq=self._seq, ts=time.time(), payload=payload)
        self.history.append(event)
        for q in self._subscribers:
            q.put_nowait(event)
        return event

    def publish_step(self, step: ExecutionStep, is_new: bool = False) -> Optional[StreamEvent]:
        return self.publish(step_event_type(step, is_new), {"step": step.to_dict()})

    def finish(self, summary: Dict[str, Any], success: bool, created_ids: Optional[Dict[str, Any]] = None) -> None:
        self.publish(StreamEventType.EXECUTION_SUMMARY, {"summary": summary})
        payload: Dict[str, Any] = {"success": success, "summary": summary}
        if created_ids:
            payload["createdIds"] = created_ids
        self.publish(StreamEventType.TIMELINE_DONE, payload)

    def fail(self, error: Dict[str, Any], summary: Optional[Dict[str, Any]] = None) -> None:
        if summary is not None:
            self.publish(StreamEventType.EXECUTION_SUMMARY, {"summary": summary})
        self.publish(StreamEventType.EXECUTION_ERROR, {"error": error})

    async def subscribe(self) -> AsyncGenerator[StreamEvent, None]:
        """
        Replay everything published so far, then follow live events until the terminal one.
        Closing the generator early only drops this subscriber.
        """
        q: asyncio.Queue = asyncio.Queue()
        replay = list(self.history)
        self._subscribers.append(q)
        try:
            for event in replay:
                yield event
                if event.type in TERMINAL_EVENTS:
                    return
            while True:
                event = await q.get()
                if event.seq <= len(replay):
                    continue
                yield event
                if event.type in TERMINAL_EVENTS:
                    return
        finally:
            self._subscribers.remove(q)


def format_sse(event: StreamEvent) -> str:
    return f"event: {event.type.value}\ndata: {json.dumps(event.data())}\n\n"


def parse_stream_event(text: str) -> Optional[Dict[str, Any]]:
    """Parse one SSE frame into {"type": ..., "payload": {...}}, None if it isn't one."""
    event_name = None
    data_lines = []
    for line in (text or "").splitlines():
        if line.startswith("event:"):
            event_name = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())
    if not data_lines:
        return None
    try:
        payload = json.loads("\n".join(data_lines))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    type_ = event_name or payload.get("type")
    if not isinstance(type_, str):
        return None
    return {"type": type_, "payload": payload}


def step_from_payload(payload: Any) -> Optional[ExecutionStep]:
    if not isinstance(payload, dict):
        return None
    raw = payload.get("step")
    if isinstance(raw, dict):
        try:
            return ExecutionStep.model_validate(raw)
        except ValueError:
            return None
    step_id = payload.get("stepId")
    if not step_id:
        return None
    status = payload.get("status") or "running"
    ts = payload.get("ts") if isinstance(payload.get("ts"), str) else None
    try:
        step = ExecutionStep(
            id=str(step_id),
            key=str(payload.get("key") or step_id),
            order=payload["order"] if isinstance(payload.get("order"), int) else 99,
            title=str(payload.get("label") or step_id),
            type=payload.get("stepType") or StepType.VALIDATION,
            status=status,
            summary=payload.get("summary") or "Step update",
            user_title=payload.get("userTitle"),
            user_message=payload.get("userMessage"),
            next_steps=payload["nextSteps"] if isinstance(payload.get("nextSteps"), list) else None,
            rationale=payload.get("rationale"),
            debug=payload.get("debug") if isinstance(payload.get("debug"), dict) else None,
            created_ids=payload.get("ids") if isinstance(payload.get("ids"), dict) else None,
        )
    except ValueError:
        return None
    if ts:
        step.started_at = ts
        if step.is_terminal:
            step.finished_at = ts
    return step


class TimelineReducer:
    def __init__(self):
        self.steps: Dict[str, ExecutionStep] = {}
        self.summary: Optional[Dict[str, Any]] = None
        self.error: Optional[Dict[str, Any]] = None
        self.success: Optional[bool] = None
        self.done = False

    def apply(self, type: str, payload: Any) -> bool:
        """Returns True when the event changed the timeline."""
        if type not in KNOWN_EVENT_TYPES or not isinstance(payload, dict):
            return False
        kind = StreamEventType(type)
        if kind in STEP_EVENTS:
            step = step_from_payload(payload)
            if step is None:
                return False
            self.steps[step.id] = step
            return True
        if kind == StreamEventType.EXECUTION_SUMMARY:
            if not isinstance(payload.get("summary"), dict):
                return False
            self.summary = payload["summary"]
            return True
        if kind == StreamEventType.TIMELINE_DONE:
            self.done = True
            self.success = bool(payload.get("success"))
            if isinstance(payload.get("summary"), dict):
                self.summary = payload["summary"]
            return True
        self.done = True
        self.success = False
        self.error = payload.get("error") if isinstance(payload.get("error"), dict) else {"message": str(payload.get("error"))}
        return True

    def apply_sse(self, text: str) -> bool:
        parsed = parse_stream_event(text)
        if parsed is None:
            return False
        return self.apply(parsed["type"], parsed["payload"])

    def ordered_steps(self) -> List[ExecutionStep]:
        return sorted(self.steps.values(), key=lambda s: (s.order, s.started_at))
