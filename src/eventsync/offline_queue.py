"""
Offline Action Queue for the eventsync system.

Captures actions that fail at the network boundary, keeps them in a durable
FIFO and drains them oldest-first whenever connectivity is regained.

Drain rules:
- Items are sent one at a time; each send is awaited before the next starts.
- A network failure stops the drain. The failed item keeps its position and
  everything behind it stays queued, so causal order is preserved.
- A definitive rejection removes the item and reports it as a permanent failure.
- Only one drain runs at a time. A second drain() call joins the running one.
- halt() stops a running drain between items without discarding anything.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from .audit_logger import AuditLogger
from .action_store import DurableActionStore
from .dispatcher import EventDispatcher
from .enums import ActionOutcome, LogLevel
from .events import ActionSettled
from .exceptions import ActionNetworkError, ActionRejectedError, PersistenceError
from .i18n import TRANSLATIONS, describe_action_error, get_message
from .models import ActionResult, DrainResult, PendingAction, utc_now
from .senders import ActionSender

TICKET_SCAN = "ticket:scan"

ResultListener = Callable[[ActionResult], None]


def ticket_scan_action(
    qr: str,
    location: Optional[str] = None,
    device: Optional[str] = None,
) -> PendingAction:
    """
    Build a ticket scan action.

    Raises:
        ActionRejectedError: If the QR input is empty
    """
    qr_trimmed = (qr or "").strip()
    if not qr_trimmed:
        raise ActionRejectedError(code="INVALID_QR", message="QR code is empty")
    payload: dict[str, Any] = {"qr": qr_trimmed}
    if location is not None:
        payload["location"] = location
    if device is not None:
        payload["device"] = device
    return PendingAction.create(TICKET_SCAN, payload)


class OfflineActionQueue:
    """
    Durable FIFO of pending actions with serial drain.

    The queue is the sole owner of its pending actions and the only user of
    its DurableActionStore.
    """

    def __init__(
        self,
        store: DurableActionStore,
        sender: ActionSender,
        max_attempts: Optional[int] = None,
        dispatcher: Optional[EventDispatcher] = None,
        logger: Optional[AuditLogger] = None,
        language: str = "en",
    ) -> None:
        """
        Initialize the queue and load whatever the store holds.

        Args:
            store: Durable backing store
            sender: Delivers one action at a time
            max_attempts: Delivery attempts before an action expires; None keeps it forever
            dispatcher: Optional dispatcher receiving ActionSettled events
            logger: Optional audit logger
            language: Language for user-facing result messages
        """
        self._store = store
        self._sender = sender
        self._max_attempts = max_attempts
        self._dispatcher = dispatcher
        self._logger = logger
        self._language = language
        self._listeners: list[ResultListener] = []
        self._drain_task: Optional[asyncio.Task[DrainResult]] = None
        self._halted = False
        self._last_persist_error: Optional[PersistenceError] = None
        self._queue: list[PendingAction] = store.load()

        if self._queue and self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "OfflineActionQueue",
                f"Restored {len(self._queue)} pending action(s)",
            )

    @property
    def pending(self) -> list[PendingAction]:
        """Snapshot of the queued actions, oldest first."""
        return list(self._queue)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def last_persist_error(self) -> Optional[PersistenceError]:
        return self._last_persist_error

    def __len__(self) -> int:
        return len(self._queue)

    def set_sender(self, sender: ActionSender) -> None:
        self._sender = sender

    def on_result(self, listener: ResultListener) -> Callable[[], None]:
        """
        Register a per-action result callback.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def submit(self, action: PendingAction) -> ActionResult:
        """
        Try to deliver an action right away, queueing it on network failure.

        While older actions are still queued the new one goes straight to
        the back of the queue, so it cannot overtake them.
        """
        if self._queue or self.draining:
            self.enqueue(action)
            return self._queued_result(action)

        action.attempt_count += 1
        try:
            response = await self._send(action)
        except ActionRejectedError as e:
            return self._report(self._rejected_result(action, e))
        except ActionNetworkError as e:
            if self._logger is not None:
                self._logger.log(
                    LogLevel.INFO,
                    "OfflineActionQueue",
                    f"Send failed, queueing {action.type} ({action.id})",
                    {"error_code": e.code},
                )
            self.enqueue(action)
            return self._queued_result(action, e)

        return self._report(ActionResult(
            action_id=action.id,
            action_type=action.type,
            outcome=ActionOutcome.SENT,
            attempts=action.attempt_count,
            response=response,
        ))

    def enqueue(self, action: PendingAction) -> None:
        """Append an action after a network-level failure and persist the queue."""
        if action.enqueued_at is None:
            action.enqueued_at = utc_now()
        self._queue.append(action)
        self._persist()

    async def drain(self) -> DrainResult:
        """
        Send queued actions oldest-first until the queue is empty or a send fails.

        A call that finds a halted drain still running waits for it to stop
        and then starts a fresh one, so halted work is never joined.

        Returns:
            Counts of flushed and remaining actions plus permanent failures
        """
        while self._halted and self.draining:
            await asyncio.shield(self._drain_task)
        if self._drain_task is None or self._drain_task.done():
            self._halted = False
            self._drain_task = asyncio.create_task(self._run_drain(), name="eventsync-drain")
        # A cancelled caller must not abort the drain for everyone else
        return await asyncio.shield(self._drain_task)

    def halt(self) -> None:
        """Stop a running drain after the current item. Nothing is discarded."""
        if self.draining:
            self._halted = True
            if self._logger is not None:
                self._logger.log(LogLevel.INFO, "OfflineActionQueue", "Halting drain")

    def clear(self) -> int:
        """
        Drop every queued action.

        Returns:
            Number of actions removed
        """
        removed = len(self._queue)
        self._queue.clear()
        self._persist()
        return removed

    async def _run_drain(self) -> DrainResult:
        flushed = 0
        rejected: list[ActionResult] = []
        expired: list[ActionResult] = []
        halted = False

        if self._queue and self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "OfflineActionQueue",
                f"Draining {len(self._queue)} pending action(s)",
            )

        while self._queue:
            if self._halted:
                halted = True
                break

            action = self._queue[0]
            action.attempt_count += 1
            try:
                response = await self._send(action)
            except ActionRejectedError as e:
                if self._halted:
                    self._persist()
                    halted = True
                    break
                self._remove(action)
                rejected.append(self._report(self._rejected_result(action, e)))
                continue
            except ActionNetworkError as e:
                if self._max_attempts is not None and action.attempt_count >= self._max_attempts:
                    self._remove(action)
                    expired.append(self._report(self._expired_result(action, e)))
                else:
                    self._persist()
                    if self._logger is not None:
                        self._logger.log(
                            LogLevel.WARN,
                            "OfflineActionQueue",
                            f"Drain stopped at {action.type} ({action.id})",
                            {"error_code": e.code, "attempts": action.attempt_count},
                        )
                    self._notify(ActionResult(
                        action_id=action.id,
                        action_type=action.type,
                        outcome=ActionOutcome.RETAINED,
                        attempts=action.attempt_count,
                        error_code=e.code,
                        message=e.message,
                    ))
                break

            if self._halted:
                # Result arrived after halt: keep the item, the server dedups by id
                self._persist()
                halted = True
                break

            self._remove(action)
            flushed += 1
            self._report(ActionResult(
                action_id=action.id,
                action_type=action.type,
                outcome=ActionOutcome.SENT,
                attempts=action.attempt_count,
                response=response,
            ))

        result = DrainResult(
            flushed=flushed,
            remaining=len(self._queue),
            rejected=rejected,
            expired=expired,
            halted=halted,
        )
        if self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "OfflineActionQueue",
                f"Drain finished: {flushed} sent, {result.remaining} remaining",
                {"rejected": len(rejected), "expired": len(expired), "halted": halted},
            )
        return result

    async def _send(self, action: PendingAction) -> Any:
        try:
            return await self._sender.send(action)
        except (ActionNetworkError, ActionRejectedError):
            raise
        except Exception as e:
            if self._logger is not None:
                self._logger.log_error(
                    component="OfflineActionQueue",
                    message=f"Sender raised unexpectedly for {action.type} ({action.id})",
                    error=e,
                )
            raise ActionNetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__) from e

    def _remove(self, action: PendingAction) -> None:
        self._queue = [queued for queued in self._queue if queued.id != action.id]
        self._persist()

    def _persist(self) -> None:
        try:
            self._store.save(self._queue)
            self._last_persist_error = None
        except PersistenceError as e:
            # The in-memory queue stays authoritative until the next successful write
            self._last_persist_error = e
            if self._logger is not None:
                self._logger.log_error(
                    component="OfflineActionQueue",
                    message="Failed to persist offline queue",
                    error=e,
                    additional_data={"queued": len(self._queue)},
                )

    def _queued_result(
        self,
        action: PendingAction,
        error: Optional[ActionNetworkError] = None,
    ) -> ActionResult:
        result = ActionResult(
            action_id=action.id,
            action_type=action.type,
            outcome=ActionOutcome.QUEUED,
            attempts=action.attempt_count,
            error_code=error.code if error is not None else None,
            message=get_message("queue.queued", self._language),
        )
        self._notify(result)
        return result

    def _rejected_result(self, action: PendingAction, error: ActionRejectedError) -> ActionResult:
        title, message = describe_action_error(error.code, self._language)
        if f"action.{str(error.code).upper()}.title" not in TRANSLATIONS and error.message:
            message = error.message
        return ActionResult(
            action_id=action.id,
            action_type=action.type,
            outcome=ActionOutcome.REJECTED,
            attempts=action.attempt_count,
            error_code=error.code,
            title=title,
            message=message,
            response=error.details.get("response"),
        )

    def _expired_result(self, action: PendingAction, error: ActionNetworkError) -> ActionResult:
        if self._logger is not None:
            self._logger.log_error(
                component="OfflineActionQueue",
                message=f"Giving up on {action.type} ({action.id}) after {action.attempt_count} attempt(s)",
                error=error,
                additional_data={"action_id": action.id, "payload": action.payload},
            )
        title, _ = describe_action_error(error.code, self._language)
        return ActionResult(
            action_id=action.id,
            action_type=action.type,
            outcome=ActionOutcome.EXPIRED,
            attempts=action.attempt_count,
            error_code=error.code,
            title=title,
            message=get_message("queue.expired", self._language, attempts=action.attempt_count),
        )

    def _report(self, result: ActionResult) -> ActionResult:
        self._notify(result)
        if self._dispatcher is not None:
            self._dispatcher.publish(ActionSettled(body={"action_id": result.action_id}, result=result))
        return result

    def _notify(self, result: ActionResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                if self._logger is not None:
                    self._logger.log_error(
                        component="OfflineActionQueue",
                        message="Result listener raised",
                        error=e,
                    )
