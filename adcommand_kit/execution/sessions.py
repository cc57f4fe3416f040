from __future__ import annotations
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from adcommand_kit.execution.events import ExecutionEventFeed

logger = logging.getLogger("execution.sessions")

DEFAULT_SESSION_TTL = 3600.0


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ExecutionSession:
    id: str
    run_id: str
    command: str
    account_id: str
    tenant_id: str
    business_id: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    status: SessionStatus = SessionStatus.PENDING
    steps: List[Dict[str, Any]] = field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    reasoning: Optional[str] = None
    blocking_error: Optional[Dict[str, Any]] = None
    created_ids: Optional[Dict[str, Any]] = None
    last_error: Optional[str] = None
    feed: Optional[ExecutionEventFeed] = None
    task: Optional[asyncio.Task] = None

    @property
    def finished(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.ERROR)


class SessionStore:
    """
    In-memory sessions, expired lazily on access once untouched for `ttl` seconds.
    One store per orchestrator process object; nothing global.
    """

    def __init__(self, ttl: float = DEFAULT_SESSION_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, ExecutionSession] = {}

    def create(self, command: str, account_id: str, tenant_id: str = "", business_id: Optional[str] = None, run_id: Optional[str] = None) -> ExecutionSession:
        self.prune()
        now = self._clock()
        run_id = run_id or uuid.uuid4().hex
        session = ExecutionSession(
            id=str(uuid.uuid4()),
            run_id=run_id,
            command=command,
            account_id=account_id,
            tenant_id=tenant_id,
            business_id=business_id,
            created_at=now,
            updated_at=now,
            feed=ExecutionEventFeed(run_id),
        )
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[ExecutionSession]:
        self.prune()
        return self._sessions.get(session_id)

    def get_by_run_id(self, run_id: str) -> Optional[ExecutionSession]:
        self.prune()
        for s in self._sessions.values():
            if s.run_id == run_id:
                return s
        return None

    def update(self, session_id: str, **changes) -> Optional[ExecutionSession]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        for name, value in changes.items():
            if not hasattr(session, name):
                raise AttributeError(f"ExecutionSession has no field {name!r}")
            setattr(session, name, value)
        session.updated_at = self._clock()
        return session

    def prune(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.updated_at > self.ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("pruned %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
