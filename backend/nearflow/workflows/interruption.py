# /nearflow/workflows/interruption.py

"""
Global commands (menu, cancel, resume, help) and the suspended-flow stack.

Every function here is pure with respect to persistence: it receives a
Session and returns a new Session. The engine commits the result.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List

from nearflow.config.settings import settings
from nearflow.models.events import NormalizedInput
from nearflow.models.session import Session, SessionStatus, SuspendedFlow, utcnow
from nearflow.workflows.definitions import MAIN_MENU
from nearflow.workflows.errors import BusyState, NothingToResume
from nearflow.workflows.expiry import prune_suspended
from nearflow.workflows.normalizer import keyword_of
from nearflow.workflows.registry import FlowRegistry

logger = logging.getLogger(__name__)


class GlobalCommand(str, Enum):
    MENU = "menu"
    CANCEL = "cancel"
    RESUME = "resume"
    HELP = "help"


# Reserved choice ids that buttons/lists can carry from any step
COMMAND_CHOICE_IDS: Dict[str, GlobalCommand] = {
    "main_menu": GlobalCommand.MENU,
    "cancel": GlobalCommand.CANCEL,
    "resume": GlobalCommand.RESUME,
    "help": GlobalCommand.HELP,
}


class InterruptionController:
    def __init__(
        self,
        registry: FlowRegistry,
        stack_depth: Optional[int] = None,
        menu_flow_id: str = MAIN_MENU
    ):
        self.registry = registry
        self.stack_depth = stack_depth or settings.suspended_stack_depth
        self.menu_flow_id = menu_flow_id
        self._keywords: Dict[str, GlobalCommand] = {}
        for command, words in (
            (GlobalCommand.MENU, settings.menu_keywords),
            (GlobalCommand.CANCEL, settings.cancel_keywords),
            (GlobalCommand.RESUME, settings.resume_keywords),
            (GlobalCommand.HELP, settings.help_keywords),
        ):
            for word in words:
                self._keywords[word] = command

    def detect(self, normalized: NormalizedInput) -> Optional[GlobalCommand]:
        """Return the global command carried by the input, if any."""
        keyword = keyword_of(normalized)
        if keyword is None:
            return None
        if normalized.raw_text is None:
            return COMMAND_CHOICE_IDS.get(keyword)
        return self._keywords.get(keyword)

    def ensure_interruptible(self, session: Session) -> None:
        if not session.is_active:
            return
        step = self.registry.step_of(session.active_flow, session.current_step)
        if not step.interruptible:
            raise BusyState(
                f"Step '{step.step_id}' of flow '{session.active_flow}' cannot be interrupted"
            )

    def interrupt(
        self,
        session: Session,
        target_flow_id: Optional[str],
        now: Optional[datetime] = None
    ) -> Session:
        """
        Suspend (or discard) the active flow and start or resume target_flow_id.

        A target of None cancels the active flow and leaves the session idle.

        Raises:
            BusyState: if the current step is declared non-interruptible
            UnknownFlow: if target_flow_id is not registered
        """
        now = now or utcnow()
        self.ensure_interruptible(session)
        stack = [entry.model_copy(deep=True) for entry in self.live_stack(session, now)]

        if target_flow_id is None:
            logger.debug(f"Cancelling flow {session.active_flow}")
            return session.model_copy(
                update={
                    "status": SessionStatus.IDLE,
                    "active_flow": None,
                    "current_step": None,
                    "slots": {},
                    "visited_steps": [],
                    "suspended_stack": stack,
                    "last_activity_at": now,
                },
                deep=True,
            )

        target = self.registry.resolve(target_flow_id)
        snapshot = stack.pop() if stack and stack[-1].flow_id == target.flow_id else None

        if session.is_active and session.active_flow != target.flow_id:
            current = self.registry.resolve(session.active_flow)
            if current.resumable:
                stack = [entry for entry in stack if entry.flow_id != current.flow_id]
                stack.append(
                    SuspendedFlow(
                        flow_id=current.flow_id,
                        step_id=session.current_step,
                        slots=dict(session.slots),
                        visited_steps=list(session.visited_steps),
                        suspended_at=now,
                    )
                )

        stack = [entry for entry in stack if entry.flow_id != target.flow_id]
        while len(stack) > self.stack_depth:
            dropped = stack.pop(0)
            logger.info(f"Suspended stack full, dropping oldest flow {dropped.flow_id}")

        if snapshot is not None:
            step_id = snapshot.step_id
            slots = dict(snapshot.slots)
            visited = list(snapshot.visited_steps)
        else:
            step_id = target.initial_step
            slots = {}
            visited = [step_id]

        return session.model_copy(
            update={
                "status": SessionStatus.ACTIVE,
                "active_flow": target.flow_id,
                "current_step": step_id,
                "slots": slots,
                "visited_steps": visited,
                "suspended_stack": stack,
                "last_activity_at": now,
            },
            deep=True,
        )

    def live_stack(self, session: Session, now: datetime) -> List[SuspendedFlow]:
        """Suspended flows still within their flow timeout."""
        live = prune_suspended(session.suspended_stack, self.registry, now)
        if len(live) < len(session.suspended_stack):
            logger.info(f"Dropped {len(session.suspended_stack) - len(live)} timed out suspended flow(s)")
        return live

    def resume(self, session: Session, now: Optional[datetime] = None) -> Session:
        """Resume the most recently suspended flow that has not timed out."""
        now = now or utcnow()
        live = self.live_stack(session, now)
        if not live:
            raise NothingToResume("No suspended flow to resume")
        return self.interrupt(session, live[-1].flow_id, now=now)

    def apply(self, session: Session, command: GlobalCommand, now: Optional[datetime] = None) -> Session:
        """Apply a mutating global command (HELP never mutates)."""
        if command == GlobalCommand.MENU:
            return self.interrupt(session, self.menu_flow_id, now=now)
        if command == GlobalCommand.CANCEL:
            return self.interrupt(session, None, now=now)
        if command == GlobalCommand.RESUME:
            return self.resume(session, now=now)
        return session
