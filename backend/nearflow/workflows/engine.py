# /nearflow/workflows/engine.py

"""
Step transition engine.

For every inbound event this module:
- Loads the user's session (or starts the entry flow for a new/idle user)
- Detects expiry, duplicate delivery and global commands
- Validates the input kind against the current step
- Delegates semantic processing to the flow's handler
- Validates the handler's proposal (next step, slot updates)
- Commits the new session with an optimistic version check, retrying once
- Returns an OutboundInstruction for the transport layer to render

Recoverable problems never escape as exceptions; the only error a caller
sees is TransientError (retry the whole event later).
"""

import asyncio
import inspect
import time
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, TypedDict

import structlog

from nearflow.config.settings import settings
from nearflow.models.events import (
    Advance,
    InboundEvent,
    InstructionKind,
    NormalizedInput,
    OutboundInstruction,
    Retry,
    SwitchFlow,
    Terminate,
    TERMINATE_STEP,
)
from nearflow.models.session import Session, SessionStatus, utcnow
from nearflow.services.session_store import SessionStore
from nearflow.utils.logging import mask_user_key
from nearflow.utils.metrics import (
    events_counter,
    handler_latency_histogram,
    interruptions_counter,
    transitions_counter,
)
from nearflow.workflows.errors import (
    BusyState,
    HandlerContractViolation,
    InvalidInput,
    NothingToResume,
    SessionExpired,
    TransientError,
    TypeMismatch,
    VersionConflict,
)
from nearflow.workflows.expiry import expire_session, has_timed_out, prune_suspended
from nearflow.workflows.handlers import FlowHandler
from nearflow.workflows.interruption import GlobalCommand, InterruptionController
from nearflow.workflows.normalizer import as_skipped, is_skip, normalize
from nearflow.workflows.registry import FlowRegistry
from nearflow.workflows.validator import (
    validate_input_kind,
    validate_next_step,
    validate_slot_updates,
)

log = structlog.get_logger(__name__)

MAX_COMMIT_ATTEMPTS = 2


class EngineResult(TypedDict):
    """Outcome of deciding one event against one loaded session."""
    applied: bool
    reason: Optional[str]
    session: Optional[Session]
    instruction: OutboundInstruction


def _unchanged(instruction: OutboundInstruction, reason: Optional[str] = None) -> EngineResult:
    return {"applied": False, "reason": reason, "session": None, "instruction": instruction}


def _changed(session: Session, instruction: OutboundInstruction) -> EngineResult:
    return {"applied": True, "reason": None, "session": session, "instruction": instruction}


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class FlowEngine:
    def __init__(
        self,
        registry: FlowRegistry,
        handlers: Mapping[str, FlowHandler],
        store: SessionStore,
        controller: Optional[InterruptionController] = None,
        entry_flow_resolver: Optional[Callable[[str], Any]] = None,
        auth_checker: Optional[Callable[[str], Any]] = None,
        handler_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        registry.validate_handlers(handlers)
        self.registry = registry
        self.handlers: Dict[str, FlowHandler] = dict(handlers)
        self.store = store
        self.controller = controller or InterruptionController(registry)
        self.entry_flow_resolver = entry_flow_resolver
        self.auth_checker = auth_checker
        self.handler_timeout = handler_timeout or settings.handler_timeout_seconds
        self.clock = clock

    # ==================== Public API ====================

    async def handle_event(self, event: InboundEvent) -> OutboundInstruction:
        """
        Process one inbound event for one user.

        Raises:
            TransientError: when the commit lost the race twice or a handler
                timed out; the transport should redeliver the event later.
        """
        logger = log.bind(user=mask_user_key(event.user_key), message_id=event.message_id)

        try:
            normalized: Optional[NormalizedInput] = normalize(event)
            invalid: Optional[InvalidInput] = None
        except InvalidInput as e:
            normalized, invalid = None, e

        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            session = await self.store.load(event.user_key)
            base_version = session.version if session else 0
            now = self.clock()

            try:
                result = await self._decide(event, session, normalized, invalid, now)
                if result["session"] is not None:
                    self.registry.check_session(result["session"])
            except HandlerContractViolation as e:
                logger.error("Handler contract violation", error=str(e))
                events_counter.labels(outcome="contract_violation").inc()
                return self._error(session, e.error_code, str(e))

            if not result["applied"]:
                events_counter.labels(outcome=result["instruction"].kind.value).inc()
                return result["instruction"]

            try:
                await self.store.commit(result["session"], base_version)
            except VersionConflict:
                logger.info("Session commit conflicted", attempt=attempt, base_version=base_version)
                if attempt >= MAX_COMMIT_ATTEMPTS:
                    events_counter.labels(outcome="transient").inc()
                    raise TransientError(
                        f"Session for {mask_user_key(event.user_key)} changed concurrently, retry later"
                    )
                continue

            instruction = result["instruction"]
            events_counter.labels(outcome=instruction.kind.value).inc()
            logger.debug(
                "Event committed",
                flow=result["session"].active_flow,
                step=result["session"].current_step,
                version=base_version + 1,
            )
            return instruction

        raise TransientError("Unreachable commit loop exit")

    # ==================== Decision ====================

    async def _decide(
        self,
        event: InboundEvent,
        session: Optional[Session],
        normalized: Optional[NormalizedInput],
        invalid: Optional[InvalidInput],
        now: datetime,
    ) -> EngineResult:
        if session is None:
            fresh = Session(user_key=event.user_key, created_at=now, last_activity_at=now)
            return await self._start_entry(fresh, event, now)

        if session.is_active and not self._is_resolvable(session):
            log.warning("Session points at a flow or step no longer registered", user=mask_user_key(session.user_key), flow=session.active_flow, step=session.current_step)
            return await self._start_entry(expire_session(session, now), event, now)

        if has_timed_out(session, self.registry, now):
            log.info("Session expired before next event", user=mask_user_key(session.user_key), flow=session.active_flow)
            expired = expire_session(session, now)
            return await self._start_entry(expired, event, now, hints={"session_expired": True}, reason=SessionExpired.error_code)

        if event.message_id and event.message_id == session.last_message_id:
            return _unchanged(self._reprompt(session, "DUPLICATE_MESSAGE"), reason="duplicate")

        if invalid is not None:
            if not session.is_active:
                return await self._start_entry(session, event, now)
            return _unchanged(self._reprompt(session, invalid.error_code, str(invalid)), reason="invalid_input")

        command = self.controller.detect(normalized)
        if command is not None:
            return await self._apply_command(session, command, event, now)

        if not session.is_active:
            hints = {"session_expired": True} if session.status == SessionStatus.EXPIRED else None
            return await self._start_entry(session, event, now, hints=hints)

        return await self._dispatch(session, normalized, event, now)

    async def _apply_command(self, session: Session, command: GlobalCommand, event: InboundEvent, now: datetime) -> EngineResult:
        if command == GlobalCommand.HELP:
            interruptions_counter.labels(command=command.value, status="help").inc()
            instruction = self._prompt(session, InstructionKind.PROMPT, extra_hints={"help": True})
            return _unchanged(instruction, reason="help")

        try:
            updated = self.controller.apply(session, command, now=now)
        except BusyState as e:
            interruptions_counter.labels(command=command.value, status="busy").inc()
            return _unchanged(self._reprompt(session, e.error_code, str(e)), reason="busy")
        except NothingToResume as e:
            interruptions_counter.labels(command=command.value, status="empty").inc()
            if not session.is_active:
                return await self._start_entry(session, event, now, reason=e.error_code)
            return _unchanged(self._reprompt(session, e.error_code, str(e)), reason="nothing_to_resume")

        interruptions_counter.labels(command=command.value, status="applied").inc()
        updated = self._touch(updated, event, now)

        if command == GlobalCommand.CANCEL:
            instruction = OutboundInstruction(
                kind=InstructionKind.TERMINATE,
                flow_id=session.active_flow,
                step_id=session.current_step,
                render_hints={"cancelled": True, "can_resume": bool(updated.suspended_stack)},
            )
            return _changed(updated, instruction)

        extra = {"resumed": True} if command == GlobalCommand.RESUME else {}
        extra["suspended"] = updated.suspended_flow_ids()
        return _changed(updated, self._prompt(updated, InstructionKind.PROMPT, extra_hints=extra))

    async def _dispatch(self, session: Session, normalized: NormalizedInput, event: InboundEvent, now: datetime) -> EngineResult:
        flow = self.registry.resolve(session.active_flow)
        step = self.registry.step_of(flow.flow_id, session.current_step)

        skipped = step.is_optional and is_skip(normalized)
        if skipped:
            normalized = as_skipped(normalized)

        kind_check = validate_input_kind(step, normalized)
        if not kind_check["is_valid"]:
            return _unchanged(
                self._reprompt(session, TypeMismatch.error_code, kind_check["message"]),
                reason="type_mismatch",
            )

        handler = self.handlers[flow.flow_id]
        try:
            result = await self._invoke(handler, session, normalized, step)
        except asyncio.TimeoutError:
            log.error("Flow handler timed out", flow=flow.flow_id, step=step.step_id)
            raise TransientError(f"Handler for flow '{flow.flow_id}' timed out")
        except (TransientError, HandlerContractViolation):
            raise
        except Exception as e:
            log.error("Flow handler failed", flow=flow.flow_id, step=step.step_id, error=str(e), exc_info=True)
            return _unchanged(self._error(session, "HANDLER_ERROR", "Something went wrong, please try again"), reason="handler_error")

        if isinstance(result, Retry):
            transitions_counter.labels(flow_id=flow.flow_id, result="retry").inc()
            touched = self._touch(session, event, now)
            return _changed(touched, self._reprompt(touched, None, result.reason, extra_hints=result.render_hints))

        if isinstance(result, Terminate):
            transitions_counter.labels(flow_id=flow.flow_id, result="terminate").inc()
            ended = self._end_flow(self._touch(session, event, now))
            instruction = OutboundInstruction(
                kind=InstructionKind.TERMINATE,
                flow_id=flow.flow_id,
                step_id=step.step_id,
                render_hints=dict(result.render_hints),
            )
            return _changed(ended, instruction)

        if isinstance(result, SwitchFlow):
            if result.target_flow_id not in self.registry:
                raise HandlerContractViolation(
                    f"Handler for flow '{flow.flow_id}' switched to unknown flow '{result.target_flow_id}'"
                )
            transitions_counter.labels(flow_id=flow.flow_id, result="switch").inc()
            return await self._start_flow(session, result.target_flow_id, event, now, extra_hints=result.render_hints)

        if isinstance(result, Advance):
            return self._advance(session, flow, step, result, event, now)

        raise HandlerContractViolation(
            f"Handler for flow '{flow.flow_id}' returned {type(result).__name__}, not a handler result"
        )

    def _advance(self, session: Session, flow, step, result: Advance, event: InboundEvent, now: datetime) -> EngineResult:
        next_check = validate_next_step(flow, result.next_step_id)
        if not next_check["is_valid"]:
            raise HandlerContractViolation(next_check["message"])

        visited = list(session.visited_steps)
        if step.step_id not in visited:
            visited.append(step.step_id)
        slot_check = validate_slot_updates(flow, visited, result.slot_updates)
        if not slot_check["is_valid"]:
            raise HandlerContractViolation(slot_check["message"])

        slots = {**session.slots, **result.slot_updates}
        next_step = None if result.next_step_id == TERMINATE_STEP else flow.get_step(result.next_step_id)

        if next_step is None or next_step.is_terminal:
            transitions_counter.labels(flow_id=flow.flow_id, result="completed").inc()
            ended = self._end_flow(self._touch(session, event, now))
            hints = {"slots": slots}
            hints.update(result.render_hints)
            instruction = OutboundInstruction(
                kind=InstructionKind.TERMINATE,
                flow_id=flow.flow_id,
                step_id=next_step.step_id if next_step else step.step_id,
                render_hints=hints,
            )
            return _changed(ended, instruction)

        if next_step.step_id not in visited:
            visited.append(next_step.step_id)
        transitions_counter.labels(flow_id=flow.flow_id, result="advance").inc()
        advanced = self._touch(session, event, now).model_copy(
            update={"current_step": next_step.step_id, "slots": slots, "visited_steps": visited},
            deep=True,
        )
        return _changed(advanced, self._prompt(advanced, InstructionKind.PROMPT, extra_hints=result.render_hints))

    # ==================== Flow starts ====================

    async def _start_entry(
        self,
        session: Session,
        event: InboundEvent,
        now: datetime,
        hints: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> EngineResult:
        flow_id = settings.default_entry_flow
        if self.entry_flow_resolver is not None:
            resolved = await _maybe_await(self.entry_flow_resolver(session.user_key))
            if resolved and resolved not in self.registry:
                log.warning("Entry flow resolver returned an unknown flow", user=mask_user_key(session.user_key), flow=resolved)
                resolved = None
            flow_id = resolved or flow_id
        result = await self._start_flow(session, flow_id, event, now, extra_hints=hints)
        result["instruction"].reason = reason
        return result

    async def _start_flow(
        self,
        session: Session,
        flow_id: str,
        event: InboundEvent,
        now: datetime,
        extra_hints: Optional[Dict[str, Any]] = None,
    ) -> EngineResult:
        flow = self.registry.resolve(flow_id)
        if flow.requires_auth and self.auth_checker is not None:
            authorized = await _maybe_await(self.auth_checker(session.user_key))
            if not authorized:
                log.info("Flow requires registration", user=mask_user_key(session.user_key), flow=flow.flow_id)
                extra_hints = {**(extra_hints or {}), "requested_flow": flow.flow_id}
                flow = self.registry.resolve(settings.registration_flow)

        live = prune_suspended(session.suspended_stack, self.registry, now)
        stack = [entry for entry in live if entry.flow_id != flow.flow_id]
        started = self._touch(session, event, now).model_copy(
            update={
                "status": SessionStatus.ACTIVE,
                "active_flow": flow.flow_id,
                "current_step": flow.initial_step,
                "slots": {},
                "visited_steps": [flow.initial_step],
                "suspended_stack": stack,
            },
            deep=True,
        )
        return _changed(started, self._prompt(started, InstructionKind.PROMPT, extra_hints=extra_hints))

    # ==================== Helpers ====================

    def _is_resolvable(self, session: Session) -> bool:
        if session.active_flow not in self.registry:
            return False
        return self.registry.resolve(session.active_flow).get_step(session.current_step) is not None

    async def _invoke(self, handler: FlowHandler, session: Session, normalized: NormalizedInput, step):
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(
                handler.process(dict(session.slots), normalized, step),
                timeout=self.handler_timeout,
            )
        finally:
            handler_latency_histogram.labels(flow_id=handler.flow_id).observe(time.perf_counter() - started)

    @staticmethod
    def _touch(session: Session, event: InboundEvent, now: datetime) -> Session:
        return session.model_copy(
            update={"last_activity_at": now, "last_message_id": event.message_id or session.last_message_id},
            deep=True,
        )

    @staticmethod
    def _end_flow(session: Session) -> Session:
        return session.model_copy(
            update={
                "status": SessionStatus.IDLE,
                "active_flow": None,
                "current_step": None,
                "slots": {},
                "visited_steps": [],
            },
            deep=True,
        )

    def _prompt(
        self,
        session: Session,
        kind: InstructionKind,
        extra_hints: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> OutboundInstruction:
        hints: Dict[str, Any] = {}
        if session.is_active:
            step = self.registry.step_of(session.active_flow, session.current_step)
            hints.update(self.handlers[session.active_flow].prompt_hints(step, session.slots))
        if extra_hints:
            hints.update(extra_hints)
        return OutboundInstruction(
            kind=kind,
            flow_id=session.active_flow,
            step_id=session.current_step,
            render_hints=hints,
            error_code=error_code,
            reason=reason,
        )

    def _reprompt(
        self,
        session: Session,
        error_code: Optional[str],
        reason: Optional[str] = None,
        extra_hints: Optional[Dict[str, Any]] = None,
    ) -> OutboundInstruction:
        return self._prompt(session, InstructionKind.REPROMPT, extra_hints=extra_hints, error_code=error_code, reason=reason)

    @staticmethod
    def _error(session: Optional[Session], error_code: str, reason: str) -> OutboundInstruction:
        return OutboundInstruction(
            kind=InstructionKind.ERROR,
            flow_id=session.active_flow if session else None,
            step_id=session.current_step if session else None,
            render_hints={"retry": True},
            error_code=error_code,
            reason=reason,
        )
