"""Sequential publish scheduler.

Actions move ``pending -> ready -> in-progress -> completed | error``. A
single worker drains a FIFO queue of ready actions; completing an action
promotes its dependents onto the back of that queue in the same call, so
siblings run in the order they became ready. Failures are recorded on the
action and never stop the loop.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from .actions import (
    Action,
    ActionStatus,
    ImageAction,
    ImageOperation,
    StructuredDataAction,
    WikidataAction,
)
from .errors import ActionStateError, PublishError
from .executor import ExecutionResult, ExecutorContext
from .utils import is_qid

logger = logging.getLogger(__name__)


@dataclass
class PublishSummary:
    completed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    blocked: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    stopped: bool = False


class PublishScheduler:
    def __init__(self, actions, executor, context: Optional[ExecutorContext] = None):
        self.actions = list(actions)
        self.executor = executor
        self.context = context or ExecutorContext()
        self._by_id = {action.id: action for action in self.actions}
        self._dependents = {}
        for action in self.actions:
            if action.depends_on:
                self._dependents.setdefault(action.depends_on, []).append(action.id)
        self._ready = deque()
        self._listeners = []
        self._stop = threading.Event()
        self._running = threading.Lock()
        # Loaded errors wait for requeue(); in-progress from an interrupted run starts over
        for action in self.actions:
            if action.is_terminal or action.status is ActionStatus.ERROR:
                continue
            if self._dependency_met(action):
                self._set_status(action, ActionStatus.READY)
                self._ready.append(action.id)
            else:
                self._set_status(action, ActionStatus.PENDING)

    # Lookups

    def get(self, action_id) -> Action:
        try:
            return self._by_id[action_id]
        except KeyError:
            raise KeyError(f"Unknown action id: {action_id}") from None

    def _dependency_met(self, action):
        if not action.depends_on:
            return True
        dependency = self._by_id.get(action.depends_on)
        return dependency is not None and dependency.status is ActionStatus.COMPLETED

    def queue(self):
        """Return every action that has not completed, in insertion order."""
        return [action for action in self.actions if action.status is not ActionStatus.COMPLETED]

    def ready_actions(self):
        return [action for action in self.actions if action.status is ActionStatus.READY]

    def blocked_actions(self):
        return [
            action
            for action in self.actions
            if action.status is ActionStatus.PENDING and not self._dependency_met(action)
        ]

    @property
    def is_complete(self):
        return all(action.is_terminal for action in self.actions)

    # Notifications

    def subscribe(self, listener: Callable[[Action], None]):
        """Register a callback receiving each action whose status changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, action, status, error=None):
        action.status = status
        action.error = error
        for listener in list(self._listeners):
            try:
                listener(action)
            except Exception:
                logger.exception("Scheduler listener %r failed", listener)

    # Execution

    def publish_one(self, action_id) -> Action:
        """Run one ready action to completion or error and return it."""
        action = self.get(action_id)
        if action.status is not ActionStatus.READY:
            raise ActionStateError(f"Action {action_id} is {action.status.value}, not ready")
        if action_id in self._ready:
            self._ready.remove(action_id)
        self._run(action)
        return action

    def _run(self, action):
        placeholder = action.entity_id if isinstance(action, WikidataAction) else None
        self._set_status(action, ActionStatus.IN_PROGRESS)
        logger.info("Publishing %s (%s)", action.id, action.kind)
        try:
            result = self.executor.execute(action, self.context)
        except PublishError as exc:
            logger.error("Action %s failed: %s", action.id, exc)
            self._set_status(action, ActionStatus.ERROR, error=str(exc))
            return
        self._set_status(action, ActionStatus.COMPLETED)
        self._propagate(action, result, placeholder)
        self._promote_dependents(action)

    def _propagate(self, action, result: ExecutionResult, placeholder=None):
        for dependent_id in self._dependents.get(action.id, []):
            dependent = self._by_id[dependent_id]
            if (
                isinstance(action, ImageAction)
                and action.action is ImageOperation.UPLOAD
                and isinstance(dependent, StructuredDataAction)
                and result.page_id
            ):
                dependent.commons_page_id = result.page_id
                logger.info("%s now targets page id %s", dependent.id, result.page_id)
            elif isinstance(action, WikidataAction) and isinstance(dependent, WikidataAction) and result.entity_id:
                if not is_qid(dependent.entity_id) or dependent.entity_id == placeholder:
                    dependent.entity_id = result.entity_id
                    logger.info("%s now targets %s", dependent.id, result.entity_id)

    def _promote_dependents(self, action):
        for dependent_id in self._dependents.get(action.id, []):
            dependent = self._by_id[dependent_id]
            if dependent.status is ActionStatus.PENDING:
                self._set_status(dependent, ActionStatus.READY)
                self._ready.append(dependent.id)

    def publish_all(self, progress: Optional[Callable[[Action], None]] = None) -> PublishSummary:
        """Drain the ready queue one action at a time until it is empty or stop() is called."""
        if not self._running.acquire(blocking=False):
            raise ActionStateError("publish_all is already running")
        try:
            self._stop.clear()
            summary = PublishSummary()
            while self._ready:
                if self._stop.is_set():
                    summary.stopped = True
                    logger.info("Publishing stopped with %d action(s) still ready", len(self._ready))
                    break
                action = self.get(self._ready.popleft())
                if action.status is not ActionStatus.READY:
                    continue
                self._run(action)
                if progress is not None:
                    progress(action)
        finally:
            self._running.release()
        for action in self.actions:
            if action.status is ActionStatus.COMPLETED:
                summary.completed.append(action.id)
            elif action.status is ActionStatus.ERROR:
                summary.failed[action.id] = action.error or ""
            elif action.status is ActionStatus.SKIPPED:
                summary.skipped.append(action.id)
            elif action.status is ActionStatus.PENDING:
                summary.blocked.append(action.id)
        return summary

    def stop(self):
        """Refuse to start further actions; an in-flight action still runs to the end."""
        self._stop.set()

    def failed_actions(self):
        return [action for action in self.actions if action.status is ActionStatus.ERROR]

    def requeue(self, action_id) -> Action:
        action = self.get(action_id)
        if action.status is not ActionStatus.ERROR:
            raise ActionStateError(f"Only failed actions can be re-queued; {action_id} is {action.status.value}")
        if self._dependency_met(action):
            self._set_status(action, ActionStatus.READY)
            self._ready.append(action.id)
        else:
            self._set_status(action, ActionStatus.PENDING)
        return action

    def skip(self, action_id) -> Action:
        action = self.get(action_id)
        if action.status in (ActionStatus.IN_PROGRESS, ActionStatus.COMPLETED):
            raise ActionStateError(f"Action {action_id} is {action.status.value} and cannot be skipped")
        if action_id in self._ready:
            self._ready.remove(action_id)
        self._set_status(action, ActionStatus.SKIPPED)
        return action
