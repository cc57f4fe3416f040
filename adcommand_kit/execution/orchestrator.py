"""
Command Execution Orchestrator.

Drives one natural-language command through a tool-calling conversation with the
chat model: every tool call the model asks for is parsed, repaired against what the
user actually said, executed through the tool gateway, and recorded as a step.
Blocking account problems stop the run with a structured error; everything else is
retried a bounded number of times.

One CommandOrchestrator can run many commands at once, all per-run state lives in
RunContext.
"""

from __future__ import annotations
import asyncio
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from adcommand_kit.ckit_ask_model import ChatModel, ToolCall
from adcommand_kit.ckit_cloudtool import openai_style_tools, sanitize_args
from adcommand_kit.execution.config import ExecutorConfig
from adcommand_kit.execution.constraints import (
    TargetingConstraints,
    enforce_targeting_constraints,
    infer_eu_countries,
    normalize_locales,
    parse_requested_ad_count,
    parse_targeting_constraints,
)
from adcommand_kit.execution.errors import (
    BlockingCode,
    ErrorCategory,
    ExecutionBlockingError,
    NormalizedExecutionError,
    normalize_execution_error,
    to_blocking_error,
)
from adcommand_kit.execution.events import ExecutionEventFeed
from adcommand_kit.execution.materials import Material, MaterialsSource, ResolvedMaterials, is_reachable_media_url, resolve_materials
from adcommand_kit.execution import prompts
from adcommand_kit.execution.retry import FixCategory, RetryStateMachine, ToolFailureBudget, backoff_delay
from adcommand_kit.execution.sessions import ExecutionSession, SessionStatus, SessionStore
from adcommand_kit.execution.steps import (
    PREFLIGHT_TOOL,
    CreatedEntityIds,
    ExecutionStep,
    ExecutionSummary,
    StepRegistry,
    StepTransitionError,
    build_execution_summary,
    step_descriptor,
)
from adcommand_kit.integrations.facebook.client import ToolGateway
from adcommand_kit.integrations.facebook.exceptions import FacebookTimeoutError, FacebookValidationError
from adcommand_kit.integrations.facebook.models import (
    BillingEvent,
    CampaignObjective,
    CreateAdArgs,
    CreateAdSetArgs,
    CreativeArgs,
    OptimizationGoal,
    ToolArgs,
    parse_tool_arguments,
)
from adcommand_kit.integrations.facebook.tools import DUPLICATE_TOOLS, FACEBOOK_TOOLS
from adcommand_kit.integrations.facebook.utils import (
    contains_facebook_macros,
    find_url_in_text,
    format_budget,
    is_placeholder_id,
    parse_tracking_url,
    validate_ad_account_id,
)

logger = logging.getLogger("execution.orchestrator")

SKIPPED_AFTER_HALT = "Skipped: the run was stopped before this call."
FALLBACK_AD_BODY = "Check this out!"


@dataclass
class ToolOutcome:
    tool: str
    arguments: Dict[str, Any]
    success: bool
    result: Optional[Dict[str, Any]] = None
    error_text: Optional[str] = None
    category: Optional[ErrorCategory] = None


@dataclass
class RunContext:
    run_id: str
    command: str
    account_id: str
    tenant_id: str
    business_id: Optional[str]
    constraints: TargetingConstraints
    requested_ads: int
    materials: ResolvedMaterials
    management: bool
    feed: ExecutionEventFeed
    retry: RetryStateMachine
    failures: ToolFailureBudget
    steps: StepRegistry = field(default_factory=StepRegistry)
    created: CreatedEntityIds = field(default_factory=CreatedEntityIds)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    outcomes: List[ToolOutcome] = field(default_factory=list)
    campaign_result: Optional[Dict[str, Any]] = None
    preflight_targeting: Optional[Dict[str, Any]] = None
    preflight_done: bool = False
    completed: bool = False
    halted: bool = False
    blocking: Optional[NormalizedExecutionError] = None
    blocking_fallback: Optional[BlockingCode] = None
    model_error: Optional[str] = None
    reasoning: str = ""
    pending_backoff: float = 0.0
    on_step: Optional[Callable[[List[ExecutionStep]], None]] = None

    def emit(self, step: ExecutionStep, is_new: bool = False) -> None:
        self.feed.publish_step(step, is_new)
        if self.on_step is not None:
            self.on_step(self.steps.list())

    def succeeded(self, tool: str) -> int:
        return sum(1 for o in self.outcomes if o.tool == tool and o.success)

    def failed_with(self, tool: str, category: ErrorCategory) -> bool:
        return any(o.tool == tool and not o.success and o.category == category for o in self.outcomes)


@dataclass
class ExecutionResult:
    run_id: str
    success: bool
    steps: List[ExecutionStep]
    summary: ExecutionSummary
    message: str
    reasoning: str = ""
    created_ids: Optional[Dict[str, Any]] = None
    blocking_error: Optional[ExecutionBlockingError] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "runId": self.run_id,
            "success": self.success,
            "steps": [s.to_dict() for s in self.steps],
            "summary": self.summary.to_dict(),
            "message": self.message,
            "reasoning": self.reasoning,
        }
        if self.created_ids:
            d["createdIds"] = self.created_ids
        if self.blocking_error is not None:
            d["blockingError"] = self.blocking_error.to_dict()
        return d


class CommandOrchestrator:
    def __init__(
        self,
        model: ChatModel,
        gateway: ToolGateway,
        materials_source: Optional[MaterialsSource] = None,
        config: Optional[ExecutorConfig] = None,
        sessions: Optional[SessionStore] = None,
    ):
        self.model = model
        self.gateway = gateway
        self.materials_source = materials_source
        self.config = config or ExecutorConfig()
        self.sessions = sessions or SessionStore(ttl=self.config.session_ttl)
        self.tools = openai_style_tools(FACEBOOK_TOOLS)

    # ---- public entry points ----

    async def run(
        self,
        command: str,
        account_id: str,
        business_id: Optional[str] = None,
        tenant_id: str = "",
        resume_from_run_id: Optional[str] = None,
        feed: Optional[ExecutionEventFeed] = None,
        run_id: Optional[str] = None,
        on_step: Optional[Callable[[List[ExecutionStep]], None]] = None,
    ) -> ExecutionResult:
        run_id = run_id or (feed.run_id if feed is not None else uuid.uuid4().hex)
        feed = feed or ExecutionEventFeed(run_id)
        ctx = await self._prepare(command, account_id, business_id, tenant_id, resume_from_run_id, feed, run_id, on_step)
        await self._converse(ctx)
        return self._finish(ctx)

    def launch(
        self,
        command: str,
        account_id: str,
        business_id: Optional[str] = None,
        tenant_id: str = "",
        resume_from_run_id: Optional[str] = None,
    ) -> ExecutionSession:
        """
        Start a run in the background and return its session right away. The session's
        feed can be subscribed to immediately, late subscribers get the full replay.
        Must be called from inside a running event loop.
        """
        session = self.sessions.create(command, account_id, tenant_id=tenant_id, business_id=business_id)
        task = asyncio.get_running_loop().create_task(self._run_session(session, resume_from_run_id))
        session.task = task

        def _done(t: asyncio.Task):
            if not t.cancelled() and t.exception() is not None:
                logger.error("run %s task died: %s", session.run_id, t.exception())

        task.add_done_callback(_done)
        logger.info("launched run %s session %s", session.run_id, session.id)
        return session

    async def _run_session(self, session: ExecutionSession, resume_from_run_id: Optional[str]) -> Optional[ExecutionResult]:
        self.sessions.update(session.id, status=SessionStatus.RUNNING)

        def on_step(steps: List[ExecutionStep]):
            self.sessions.update(session.id, steps=[s.to_dict() for s in steps])

        try:
            result = await self.run(
                session.command,
                session.account_id,
                business_id=session.business_id,
                tenant_id=session.tenant_id,
                resume_from_run_id=resume_from_run_id,
                feed=session.feed,
                run_id=session.run_id,
                on_step=on_step,
            )
        except Exception as e:
            logger.exception("run %s crashed", session.run_id)
            self.sessions.update(session.id, status=SessionStatus.ERROR, last_error=f"{type(e).__name__}: {e}")
            session.feed.fail({"message": f"Execution failed: {e}"})
            return None
        self.sessions.update(
            session.id,
            status=SessionStatus.ERROR if result.blocking_error is not None else SessionStatus.COMPLETED,
            steps=[s.to_dict() for s in result.steps],
            summary=result.summary.to_dict(),
            message=result.message,
            reasoning=result.reasoning,
            blocking_error=result.blocking_error.to_dict() if result.blocking_error is not None else None,
            created_ids=result.created_ids,
        )
        return result

    # ---- run phases ----

    async def _prepare(self, command, account_id, business_id, tenant_id, resume_from_run_id, feed, run_id, on_step) -> RunContext:
        constraints = parse_targeting_constraints(command)
        requested_ads = parse_requested_ad_count(command)
        available = await self._load_materials(account_id, run_id)
        materials = resolve_materials(
            command,
            available,
            requested_ads,
            recent_seconds=self.config.recent_material_seconds,
            limit=self.config.max_command_materials,
        )
        ctx = RunContext(
            run_id=run_id,
            command=command,
            account_id=account_id,
            tenant_id=tenant_id or "",
            business_id=business_id,
            constraints=constraints,
            requested_ads=requested_ads,
            materials=materials,
            management=prompts.is_management_command(command),
            feed=feed,
            retry=RetryStateMachine(),
            failures=ToolFailureBudget(self.config.max_tool_failures),
            on_step=on_step,
        )
        logger.info(
            "start run=%s account=%s ads=%d management=%s materials=%d/%d constraints=%s",
            run_id, account_id, requested_ads, ctx.management, len(materials.for_command), len(available),
            "none" if constraints.is_empty() else constraints,
        )
        already_created = self._seed_resume(ctx, resume_from_run_id) if resume_from_run_id else None
        ctx.messages = [
            {"role": "system", "content": prompts.build_system_prompt(account_id, materials, already_created)},
            {"role": "user", "content": prompts.build_user_message(command)},
        ]
        return ctx

    async def _load_materials(self, account_id: str, run_id: str) -> List[Material]:
        if self.materials_source is None:
            return []
        try:
            return await asyncio.wait_for(self.materials_source.list_materials(account_id), timeout=self.config.tool_timeout)
        except Exception as e:
            logger.warning("run=%s materials unavailable, continuing without them: %s", run_id, e)
            return []

    def _seed_resume(self, ctx: RunContext, resume_from_run_id: str) -> Optional[str]:
        previous = self.sessions.get_by_run_id(resume_from_run_id)
        if previous is None or not previous.created_ids:
            logger.warning("run=%s nothing to resume from run %s", ctx.run_id, resume_from_run_id)
            return None
        ctx.created = CreatedEntityIds.model_validate(previous.created_ids)
        created = ctx.created
        if created.campaign_id:
            ctx.campaign_result = {"id": created.campaign_id}
            step = ctx.steps.record_resumed(
                step_descriptor("create_campaign"),
                f"Reusing campaign {created.campaign_id} from run {resume_from_run_id}.",
                {"campaignId": created.campaign_id},
            )
            ctx.emit(step, True)
        if created.ad_set_id:
            step = ctx.steps.record_resumed(
                step_descriptor("create_adset"),
                f"Reusing ad set {created.ad_set_id} from run {resume_from_run_id}.",
                {"adSetId": created.ad_set_id},
            )
            ctx.emit(step, True)
        for ad_id in created.ad_ids:
            step = ctx.steps.record_resumed(
                step_descriptor("create_ad"),
                f"Reusing ad {ad_id} from run {resume_from_run_id}.",
                {"adId": ad_id},
            )
            ctx.emit(step, True)
        logger.info("run=%s resuming from %s with %s", ctx.run_id, resume_from_run_id, created.to_dict())
        return prompts.resume_note(created.campaign_id, created.ad_set_id, created.ad_ids)

    async def _converse(self, ctx: RunContext) -> None:
        for iteration in range(1, self.config.max_iterations + 1):
            if ctx.pending_backoff > 0:
                logger.info("run=%s backing off %.1fs after rate limit", ctx.run_id, ctx.pending_backoff)
                await asyncio.sleep(ctx.pending_backoff)
                ctx.pending_backoff = 0.0
            try:
                turn = await asyncio.wait_for(self.model.next_turn(ctx.messages, self.tools), timeout=self.config.model_timeout)
            except asyncio.TimeoutError:
                ctx.model_error = f"the model did not answer within {self.config.model_timeout:g} seconds"
                logger.warning("run=%s iteration=%d %s", ctx.run_id, iteration, ctx.model_error)
                return
            except Exception as e:
                ctx.model_error = f"{type(e).__name__}: {e}"
                logger.warning("run=%s iteration=%d model call failed: %s", ctx.run_id, iteration, ctx.model_error)
                return

            ctx.messages.append(turn.as_message())
            if turn.content:
                ctx.reasoning = turn.content
            if not turn.tool_calls:
                ctx.completed = True
                logger.info("run=%s iteration=%d model finished without tool calls", ctx.run_id, iteration)
                return

            logger.info("run=%s iteration=%d tool_calls=%s", ctx.run_id, iteration, [c.name for c in turn.tool_calls])
            ctx.preflight_targeting = self._preflight_targeting(ctx, turn.tool_calls)
            for call in turn.tool_calls:
                # Every tool call needs an answer in the conversation, even skipped ones
                if ctx.halted:
                    content = SKIPPED_AFTER_HALT
                else:
                    content = await self._execute_tool_call(ctx, call)
                ctx.messages.append({"role": "tool", "tool_call_id": call.id, "content": content})
            if ctx.halted:
                return
            self._steer(ctx)
            if ctx.completed:
                return
        logger.warning("run=%s stopped at the iteration ceiling (%d)", ctx.run_id, self.config.max_iterations)

    def _steer(self, ctx: RunContext) -> None:
        created = ctx.created
        ads = len(created.ad_ids)
        if any(ctx.succeeded(t) for t in DUPLICATE_TOOLS):
            ctx.completed = True
            return
        if not created.campaign_id:
            return
        if ctx.management:
            if not created.ad_set_id:
                note = prompts.nudge_duplicate_adset(created.campaign_id)
            elif ads == 0:
                note = prompts.nudge_duplicate_ad(created.ad_set_id)
            else:
                ctx.completed = True
                return
        elif not created.ad_set_id:
            note = prompts.nudge_create_adset(created.campaign_id)
        elif ads < ctx.requested_ads:
            note = prompts.nudge_next_ad(created.ad_set_id, ads, ctx.requested_ads, ctx.materials)
        else:
            ctx.completed = True
            return
        ctx.messages.append({"role": "user", "content": note})

    def _finish(self, ctx: RunContext) -> ExecutionResult:
        for step in ctx.steps.live_steps():
            step = ctx.steps.mark_error(
                step.key,
                "Stopped before this step finished.",
                user_title=step.user_title or f"{step.title} did not finish",
                user_message=step.user_message or "The run ended before this step could complete.",
                next_steps=step.next_steps,
                rationale=step.rationale,
                technical_details=step.technical_details,
                debug=step.debug,
                meta={"stopped": True},
            )
            ctx.emit(step)

        counts: Dict[str, int] = {}
        for o in ctx.outcomes:
            if o.success:
                counts[o.tool] = counts.get(o.tool, 0) + 1
        message = prompts.build_final_message(ctx.command, counts, len(ctx.outcomes), ctx.requested_ads)
        if ctx.model_error:
            message += f" The run stopped early because {ctx.model_error}."
        elif not ctx.completed and not ctx.halted and not ctx.blocking:
            message += " The run reached its step limit before the command was fully executed."

        steps = ctx.steps.list()
        created_ids = None if ctx.created.is_empty() else ctx.created.to_dict()
        blocking_error = None
        if ctx.blocking is not None:
            blocking_error = to_blocking_error(ctx.blocking, ctx.tenant_id, ctx.account_id, fallback_code=ctx.blocking_fallback)
            message = blocking_error.user_message
            summary = build_execution_summary(steps, False, message, ctx.created)
            ctx.feed.fail(blocking_error.to_dict(), summary=summary.to_dict())
        else:
            summary = build_execution_summary(steps, ctx.completed and not ctx.halted, message, ctx.created, ctx.requested_ads)
            ctx.feed.finish(summary.to_dict(), success=summary.final_status == "success", created_ids=created_ids)

        logger.info(
            "done run=%s status=%s steps=%d/%d retries=%d created=%s%s",
            ctx.run_id, summary.final_status, summary.steps_completed, summary.total_steps, summary.retries,
            created_ids or {}, f" blocking={blocking_error.code}" if blocking_error is not None else "",
        )
        return ExecutionResult(
            run_id=ctx.run_id,
            success=summary.final_status == "success",
            steps=steps,
            summary=summary,
            message=message,
            reasoning=ctx.reasoning,
            created_ids=created_ids,
            blocking_error=blocking_error,
        )

    # ---- one tool call ----

    async def _execute_tool_call(self, ctx: RunContext, call: ToolCall) -> str:
        name = call.name
        reused = self._reuse_created(ctx, name)
        if reused is not None:
            logger.info("run=%s tool=%s skipped, entity already exists: %s", ctx.run_id, name, reused)
            return json.dumps(reused)

        descriptor = step_descriptor(name)
        step, is_new = ctx.steps.register_attempt(descriptor, f"Executing {descriptor.title.lower()}...", meta={"tool": name})
        ctx.emit(step, is_new)
        logger.info("started run=%s tool=%s step=%s attempt=%d", ctx.run_id, name, step.key, step.attempts)

        fixes: List[str] = []
        payload: Optional[Dict[str, Any]] = None
        try:
            args = parse_tool_arguments(name, call.arguments)
            if name == "create_campaign" and not ctx.preflight_done:
                if not await self._preflight(ctx, step.key):
                    return f"Error: {ctx.blocking.debug.raw if ctx.blocking else 'preflight failed'}"
            self._pin_account(ctx, args, fixes)
            if isinstance(args, CreateAdSetArgs):
                self._fix_adset(ctx, args, fixes)
            elif isinstance(args, CreateAdArgs):
                self._fix_ad(ctx, args, fixes)
            payload = args.to_payload()
            if fixes:
                step = ctx.steps.append_fixes(step.key, fixes)
                ctx.emit(step)
                logger.info("autofix run=%s tool=%s attempt=%d %s", ctx.run_id, name, step.attempts, " | ".join(fixes))
            result = await asyncio.wait_for(self.gateway.call_tool(name, payload), timeout=self.config.tool_timeout)
        except StepTransitionError:
            raise
        except asyncio.TimeoutError:
            error: Exception = FacebookTimeoutError(self.config.tool_timeout, what=f"Tool {name}")
            return await self._on_failure(ctx, name, step.key, fixes, payload or self._raw_args(call), error)
        except Exception as e:
            return await self._on_failure(ctx, name, step.key, fixes, payload or self._raw_args(call), e)
        return self._on_success(ctx, name, step.key, fixes, payload, result if isinstance(result, dict) else {"result": result})

    @staticmethod
    def _raw_args(call: ToolCall) -> Dict[str, Any]:
        args, _ = sanitize_args(call.arguments)
        return args

    def _reuse_created(self, ctx: RunContext, name: str) -> Optional[Dict[str, Any]]:
        created = ctx.created
        if name == "create_campaign" and created.campaign_id:
            return {"id": created.campaign_id, "reused": True, "note": "Campaign already exists in this run, it was not created again."}
        if name == "create_adset" and created.ad_set_id:
            return {"id": created.ad_set_id, "reused": True, "note": "Ad set already exists in this run, it was not created again."}
        if name == "create_ad" and len(created.ad_ids) >= ctx.requested_ads:
            return {
                "reused": True,
                "adIds": list(created.ad_ids),
                "note": f"All {ctx.requested_ads} requested ad(s) already exist, no more ads will be created.",
            }
        return None

    def _on_success(self, ctx: RunContext, name: str, step_key: str, fixes: List[str], payload: Dict[str, Any], result: Dict[str, Any]) -> str:
        ctx.failures.record_success(name)
        created = ctx.created
        if name == "create_campaign":
            created.record_campaign(result.get("id"))
            ctx.campaign_result = {
                "objective": payload.get("objective"),
                "budget": {"daily": payload.get("dailyBudget"), "lifetime": payload.get("lifetimeBudget")},
                **result,
            }
        elif name == "create_adset":
            created.record_ad_set(result.get("id"))
        elif name == "create_ad":
            created.record_ad(result.get("id"))
        ctx.outcomes.append(ToolOutcome(tool=name, arguments=payload, success=True, result=result))

        fields = self._success_fields(ctx, name, payload, result)
        step = ctx.steps.mark_success(step_key, fields.pop("summary"), fixes_applied=fixes, **fields)
        ctx.emit(step)
        logger.info("result run=%s tool=%s attempt=%d ok %s", ctx.run_id, name, step.attempts, step.created_ids or "")
        return json.dumps(result)

    def _success_fields(self, ctx: RunContext, name: str, payload: Dict[str, Any], result: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = result.get("id")
        if name == "create_campaign":
            daily = (ctx.campaign_result or {}).get("budget", {}).get("daily")
            return {
                "summary": f'Campaign "{payload.get("name") or result.get("name") or "Untitled"}" created with {format_budget(daily)} budget.',
                "user_title": "Campaign created",
                "user_message": "Campaign setup completed successfully.",
                "rationale": "The campaign passed account checks and was accepted by Meta.",
                "technical_details": f"Campaign ID: {entity_id}",
                "created_ids": {"campaignId": str(entity_id)} if entity_id else None,
                "meta": {"objective": payload.get("objective"), "status": payload.get("status")},
            }
        if name == "create_adset":
            return {
                "summary": "Ad set created successfully with validated targeting and budget settings.",
                "user_title": "Ad set created",
                "user_message": "Targeting and budget were accepted.",
                "rationale": "Targeting was checked against the command before submission.",
                "technical_details": f"Ad set ID: {entity_id}",
                "created_ids": {"campaignId": ctx.created.campaign_id, "adSetId": str(entity_id)} if entity_id else None,
                "meta": {"targeting": payload.get("targeting"), "optimizationGoal": payload.get("optimizationGoal")},
            }
        if name == "create_ad":
            n = len(ctx.created.ad_ids)
            return {
                "summary": f"{n} of {ctx.requested_ads} ad{'' if ctx.requested_ads == 1 else 's'} created successfully.",
                "user_title": "Ad created",
                "user_message": "The creative was accepted.",
                "rationale": "Creative media and destination URL were validated before submission.",
                "technical_details": f"Ad ID: {entity_id}",
                "created_ids": {"adSetId": ctx.created.ad_set_id, "adId": str(entity_id)} if entity_id else None,
                "meta": {"adIndex": n, "creative": payload.get("creative")},
            }
        return {
            "summary": f"{name} completed successfully.",
            "user_title": f"{step_descriptor(name).title} done",
            "user_message": "The requested operation completed successfully.",
            "rationale": "The requested operation completed successfully.",
            "technical_details": json.dumps(result)[:500],
        }

    async def _on_failure(self, ctx: RunContext, name: str, step_key: str, fixes: List[str], arguments: Dict[str, Any], error: Exception) -> str:
        normalized = normalize_execution_error(error)
        category = normalized.category
        failures = ctx.failures.record_failure(name)
        ctx.outcomes.append(ToolOutcome(tool=name, arguments=arguments, success=False, error_text=normalized.debug.raw, category=category))

        exhausted = ctx.failures.exhausted(name)
        will_retry = not normalized.blocking and not exhausted
        notes = list(fixes)
        if will_retry and category == ErrorCategory.BID_REQUIRED:
            notes.append("Auto-fixed: Applied fallback bid amount and retried.")
        elif will_retry and category == ErrorCategory.ADVANTAGE_AUDIENCE:
            notes.append("Auto-fixed: Set targetingAutomation.advantageAudience and retried.")
        elif will_retry and category == ErrorCategory.RATE_LIMIT:
            # Doubles with this tool's consecutive failures; a success resets it
            ctx.retry.mark_applied(FixCategory.RATE_LIMIT)
            delay = backoff_delay(self.config.rate_limit_backoff, failures)
            ctx.pending_backoff = max(ctx.pending_backoff, delay)

        step = ctx.steps.get(step_key)
        fields = dict(
            user_title=normalized.user_title,
            user_message=normalized.user_message,
            next_steps=normalized.next_steps,
            rationale=normalized.rationale,
            technical_details=normalized.debug.raw,
            debug=normalized.debug.to_dict(),
            fixes_applied=notes,
            meta={"category": category.value, "consecutiveFailures": failures},
        )
        if will_retry:
            step = ctx.steps.mark_retrying(step_key, f"Attempt {step.attempts} failed. Retrying automatically.", **fields)
            logger.info("retry run=%s tool=%s attempt=%d category=%s", ctx.run_id, name, step.attempts, category.value)
        else:
            step = ctx.steps.mark_error(step_key, f"{step.title} failed.", **fields)
            logger.warning("failed run=%s tool=%s attempt=%d category=%s: %s", ctx.run_id, name, step.attempts, category.value, normalized.debug.raw[:300])
        ctx.emit(step)

        if name == "create_ad" and category == ErrorCategory.BILLING:
            await self._roll_back(ctx, step_key)
        if normalized.blocking:
            ctx.blocking = normalized
            ctx.halted = True
            logger.warning("blocking run=%s tool=%s category=%s", ctx.run_id, name, category.value)
        elif exhausted:
            ctx.halted = True
            logger.warning("run=%s giving up on %s after %d consecutive failures", ctx.run_id, name, failures)
        return f"Error: {normalized.debug.raw}"

    async def _roll_back(self, ctx: RunContext, step_key: str) -> None:
        # Entities already created would start spending once billing is fixed, pause them
        targets = [("update_adset", "adSetId", i) for i in reversed(ctx.created.ad_set_ids)]
        if ctx.created.campaign_id:
            targets.append(("update_campaign", "campaignId", ctx.created.campaign_id))
        paused: List[str] = []
        failed: List[str] = []
        for tool, key, entity_id in targets:
            try:
                await asyncio.wait_for(self.gateway.call_tool(tool, {key: entity_id, "status": "PAUSED"}), timeout=self.config.tool_timeout)
                paused.append(entity_id)
                logger.info("rollback run=%s paused %s %s", ctx.run_id, key, entity_id)
            except Exception as e:
                failed.append(entity_id)
                logger.warning("rollback run=%s could not pause %s %s: %s", ctx.run_id, key, entity_id, e)
        if targets:
            ctx.steps.enrich_meta(step_key, {"rollback": {"paused": paused, "failed": failed}})

    # ---- preflight ----

    def _preflight_targeting(self, ctx: RunContext, calls: List[ToolCall]) -> Optional[Dict[str, Any]]:
        for call in calls:
            if call.name != "create_adset":
                continue
            try:
                adset = parse_tool_arguments("create_adset", call.arguments)
            except FacebookValidationError:
                break
            enforce_targeting_constraints(adset.targeting, ctx.constraints)
            return adset.targeting.to_payload()
        countries = ctx.constraints.countries or infer_eu_countries(ctx.command)
        if countries:
            return {"geoLocations": {"countries": list(countries)}}
        return None

    async def _preflight(self, ctx: RunContext, campaign_key: str) -> bool:
        ctx.preflight_done = True
        descriptor = step_descriptor(PREFLIGHT_TOOL)
        step, is_new = ctx.steps.register_attempt(descriptor, "Checking account readiness before creating the campaign...", meta={"tool": PREFLIGHT_TOOL})
        ctx.emit(step, is_new)
        payload: Dict[str, Any] = {"accountId": validate_ad_account_id(ctx.account_id)}
        if ctx.preflight_targeting:
            payload["adSetTargeting"] = ctx.preflight_targeting
        try:
            await asyncio.wait_for(self.gateway.call_tool(PREFLIGHT_TOOL, payload), timeout=self.config.tool_timeout)
        except asyncio.TimeoutError:
            error: Exception = FacebookTimeoutError(self.config.tool_timeout, what="Campaign preflight")
        except Exception as e:
            error = e
        else:
            step = ctx.steps.mark_success(
                step.key,
                "Account checks passed before campaign creation.",
                user_title="Account ready",
                user_message="Billing, page and compliance checks passed.",
                meta={"targeting": ctx.preflight_targeting},
            )
            ctx.emit(step)
            return True

        normalized = normalize_execution_error(error)
        ctx.outcomes.append(ToolOutcome(tool=PREFLIGHT_TOOL, arguments=payload, success=False, error_text=normalized.debug.raw, category=normalized.category))
        fields = dict(
            user_title=normalized.user_title,
            user_message=normalized.user_message,
            next_steps=normalized.next_steps,
            rationale=normalized.rationale,
            technical_details=normalized.debug.raw,
            debug=normalized.debug.to_dict(),
            meta={"category": normalized.category.value},
        )
        ctx.emit(ctx.steps.mark_error(step.key, "Campaign validation failed.", **fields))
        fields["user_message"] = "Account setup checks failed before campaign creation could start."
        ctx.emit(ctx.steps.mark_error(campaign_key, "Campaign validation failed before creation.", **fields))
        ctx.blocking = normalized
        ctx.blocking_fallback = BlockingCode.DSA_REQUIRED
        ctx.halted = True
        logger.warning("blocking run=%s preflight category=%s: %s", ctx.run_id, normalized.category.value, normalized.debug.raw[:300])
        return False

    # ---- argument repair ----

    def _pin_account(self, ctx: RunContext, args: ToolArgs, fixes: List[str]) -> None:
        if "account_id" not in type(args).model_fields:
            return
        expected = validate_ad_account_id(ctx.account_id)
        current = getattr(args, "account_id", None)
        if current == expected:
            return
        args.account_id = expected
        if current:
            fixes.append(f"Replaced ad account {current} with the account this command was issued for.")

    def _fix_adset(self, ctx: RunContext, args: CreateAdSetArgs, fixes: List[str]) -> None:
        if is_placeholder_id(args.campaign_id):
            if not ctx.created.campaign_id:
                raise FacebookValidationError("campaignId", "Cannot create adset: no valid campaign ID available. Create the campaign first.")
            args.campaign_id = ctx.created.campaign_id
            ctx.retry.mark_applied(FixCategory.CAMPAIGN_ID_PLACEHOLDER)
            fixes.append("Used the campaign ID generated in the previous step.")

        if args.daily_budget is None and args.lifetime_budget is None:
            budget = (ctx.campaign_result or {}).get("budget") or {}
            if budget.get("daily"):
                args.daily_budget = int(budget["daily"])
                fixes.append("Inherited ad set daily budget from campaign settings.")
            elif budget.get("lifetime"):
                args.lifetime_budget = int(budget["lifetime"])
                fixes.append("Inherited ad set lifetime budget from campaign settings.")
            else:
                args.daily_budget = self.config.fallback_daily_budget
                fixes.append(f"Applied a safe fallback daily budget of {format_budget(self.config.fallback_daily_budget)}.")
            ctx.retry.mark_applied(FixCategory.BUDGET_MISSING)

        if ctx.failed_with("create_adset", ErrorCategory.BID_REQUIRED) and not (args.bid_amount and args.bid_amount > 0):
            # Once applied, re-applied on every later attempt
            if ctx.retry.was_applied(FixCategory.BID_REQUIRED) or ctx.retry.mark_applied(FixCategory.BID_REQUIRED):
                daily = args.daily_budget or 0
                args.bid_amount = max(100, math.floor(daily * 0.2)) if daily > 0 else 300
                fixes.append("Added a fallback bid cap based on budget and retried.")

        objective = (ctx.campaign_result or {}).get("objective")
        if objective == CampaignObjective.LEADS.value:
            # Only a missing or generic goal is replaced; explicit lead goals are kept
            if not args.optimization_goal or args.optimization_goal == "LEADS":
                args.optimization_goal = OptimizationGoal.LEAD_GENERATION.value
                fixes.append("Aligned optimization goal with leads objective.")
            if not args.billing_event:
                args.billing_event = BillingEvent.IMPRESSIONS.value
                fixes.append("Applied default billing event for leads objective.")

        t = args.targeting
        if t.advantage_audience is not None:
            flag = 1 if str(t.advantage_audience).strip().lower() in ("1", "true") else 0
            t.targeting_automation = {**(t.targeting_automation or {}), "advantageAudience": flag}
            t.advantage_audience = None
            fixes.append("Normalized Advantage Audience targeting format.")
        if ctx.failed_with("create_adset", ErrorCategory.ADVANTAGE_AUDIENCE) and (t.targeting_automation or {}).get("advantageAudience") != 0:
            if ctx.retry.was_applied(FixCategory.ADVANTAGE_AUDIENCE) or ctx.retry.mark_applied(FixCategory.ADVANTAGE_AUDIENCE):
                t.targeting_automation = {**(t.targeting_automation or {}), "advantageAudience": 0}
                fixes.append("Disabled Advantage Audience to satisfy Meta requirement.")

        if t.locales is not None:
            normalized = normalize_locales(t.locales)
            if normalized:
                if normalized != t.locales:
                    t.locales = normalized
                    fixes.append(f"Passing language targeting to Meta for resolution: [{', '.join(str(x) for x in normalized)}].")
            elif ctx.constraints.locale_codes:
                t.locales = list(ctx.constraints.locale_codes)
                ctx.retry.mark_applied(FixCategory.LOCALE_MISMATCH)
                fixes.append(f"Restored {ctx.constraints.language} language targeting from user command.")
            else:
                t.locales = None
                fixes.append("Removed empty locale targeting, no language was specified in the command.")

        enforced = enforce_targeting_constraints(t, ctx.constraints)
        if enforced:
            logger.info("constraint run=%s tool=create_adset %s", ctx.run_id, " | ".join(enforced))
            fixes.extend(enforced)

    def _fix_ad(self, ctx: RunContext, args: CreateAdArgs, fixes: List[str]) -> None:
        if is_placeholder_id(args.ad_set_id):
            if not ctx.created.ad_set_id:
                raise FacebookValidationError("adSetId", "Cannot create ad: no valid ad set ID available. Create the ad set first.")
            args.ad_set_id = ctx.created.ad_set_id
            fixes.append("Used the ad set ID generated in the previous step.")

        ad_index = len(ctx.created.ad_ids)
        if not args.name:
            args.name = f"Ad {ad_index + 1}"
        if args.creative is None:
            args.creative = CreativeArgs()
        c = args.creative

        if c.link_url and "?" in c.link_url:
            base, params = parse_tracking_url(c.link_url)
            c.link_url = base
            if params and not c.url_parameters:
                c.url_parameters = params
                if contains_facebook_macros(params):
                    fixes.append("Moved Facebook URL macros into URL parameters field.")
                else:
                    fixes.append("Extracted tracking query parameters into URL parameters field.")

        self._fix_media(ctx, c, ad_index, fixes)

        if not c.link_url:
            url = find_url_in_text(ctx.command)
            if not url:
                raise FacebookValidationError(
                    "linkUrl", "Missing required linkUrl in ad creative. Please include a destination URL in your command."
                )
            base, params = parse_tracking_url(url)
            c.link_url = base
            if params and not c.url_parameters:
                c.url_parameters = params
            fixes.append("Extracted destination URL from command text.")

        if not c.title:
            c.title = args.name
            fixes.append("Added fallback ad title.")
        if not c.body:
            c.body = FALLBACK_AD_BODY
            fixes.append("Added fallback ad body text.")

    def _fix_media(self, ctx: RunContext, c: CreativeArgs, ad_index: int, fixes: List[str]) -> None:
        image, video, prefer_video = ctx.materials.media_for_ad(ad_index)
        bases = self.config.media_base_urls
        known = ctx.materials.available

        if c.image_url and not is_reachable_media_url(c.image_url, bases, known):
            ctx.retry.mark_applied(FixCategory.CREATIVE_URL)
            if image is not None:
                c.image_url = image.file_url
                fixes.append("Replaced invalid image URL with uploaded material URL.")
            else:
                c.image_url = None
                fixes.append("Removed invalid image URL from ad creative payload.")
        if c.video_url and not is_reachable_media_url(c.video_url, bases, known):
            ctx.retry.mark_applied(FixCategory.CREATIVE_URL)
            if video is not None:
                c.video_url = video.file_url
                fixes.append("Replaced invalid video URL with uploaded material URL.")
            else:
                c.video_url = None
                fixes.append("Removed invalid video URL from ad creative payload.")

        if c.image_url and c.image_url.lower().split("?")[0].endswith(".mp4"):
            if not c.video_url:
                c.video_url = c.image_url
            c.image_url = None
            fixes.append("Moved MP4 media from image slot to video slot.")

        if not c.image_url and not c.video_url:
            if prefer_video and video is not None:
                c.video_url = video.file_url
                fixes.append("Added video creative from uploaded materials.")
            elif image is not None:
                c.image_url = image.file_url
                fixes.append("Added image creative from uploaded materials.")

        if c.video_url and not c.image_url:
            thumb = ctx.materials.thumbnail()
            if thumb is not None:
                c.image_url = thumb.file_url
                fixes.append("Added thumbnail image required for video ad.")
