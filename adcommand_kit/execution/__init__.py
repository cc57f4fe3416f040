"""
Command execution: turns one natural-language ads command into campaign, ad set and
ad creation through the chat model, with auto-fixes, bounded retries and a live
step timeline.

Usage:
    orchestrator = CommandOrchestrator(model, gateway, materials_source)
    session = orchestrator.launch("Create a leads campaign for Romanian men ...", "act_123")
    async for event in session.feed.subscribe():
        print(format_sse(event))
"""

from .config import ExecutorConfig
from .errors import ErrorCategory, ExecutionBlockingError, NormalizedExecutionError, normalize_execution_error
from .events import ExecutionEventFeed, StreamEventType, TimelineReducer, format_sse
from .orchestrator import CommandOrchestrator, ExecutionResult
from .sessions import ExecutionSession, SessionStatus, SessionStore
from .steps import CreatedEntityIds, ExecutionStep, ExecutionSummary, StepStatus

__all__ = [
    "ExecutorConfig",
    "ErrorCategory",
    "ExecutionBlockingError",
    "NormalizedExecutionError",
    "normalize_execution_error",
    "ExecutionEventFeed",
    "StreamEventType",
    "TimelineReducer",
    "format_sse",
    "CommandOrchestrator",
    "ExecutionResult",
    "ExecutionSession",
    "SessionStatus",
    "SessionStore",
    "CreatedEntityIds",
    "ExecutionStep",
    "ExecutionSummary",
    "StepStatus",
]
