"""
Durable Action Store for the offline action queue.

Persists the whole pending-action queue under a single storage key. Every
save is a whole-queue overwrite. A missing or unreadable entry loads as an
empty queue: losing queued actions on corruption is acceptable, failing the
host application is not.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from .audit_logger import AuditLogger
from .exceptions import PersistenceError, QueueCorruptError
from .models import PendingAction
from .storage import KeyValueStorage


class DurableActionStore:
    """
    Whole-queue persistence for pending actions.

    Stored format::

        {"version": 1, "updated_at": "<iso>", "actions": [{...}, ...]}

    A bare JSON list of actions is accepted on load as well.
    """

    VERSION = 1

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = "scanner_offline_queue_v1",
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            storage: Key/value medium the queue is written to
            key: Storage key holding the serialized queue
            logger: Optional audit logger for corruption reports
        """
        self._storage = storage
        self._key = key
        self._logger = logger
        self._last_error: Optional[QueueCorruptError] = None

    @property
    def key(self) -> str:
        return self._key

    @property
    def last_error(self) -> Optional[QueueCorruptError]:
        """The corruption detected by the most recent load, if any."""
        return self._last_error

    def load(self) -> list[PendingAction]:
        """
        Load the persisted queue in FIFO order.

        Returns:
            The stored actions, or an empty list if nothing is stored or the
            stored value is unreadable
        """
        self._last_error = None
        try:
            raw = self._storage.get(self._key)
        except PersistenceError as e:
            self._report_corrupt("Failed to read offline queue", e)
            return []

        if raw is None or not raw.strip():
            return []

        try:
            data = json.loads(raw)
            entries = data.get("actions") if isinstance(data, dict) else data
            if not isinstance(entries, list):
                raise ValueError("Stored queue is not a list of actions")
            return [PendingAction.from_dict(entry) for entry in entries]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self._report_corrupt("Failed to parse offline queue", e)
            return []

    def save(self, queue: list[PendingAction]) -> None:
        """
        Replace the persisted queue.

        Raises:
            PersistenceError: If the storage medium rejects the write
        """
        output_data = {
            "version": self.VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "actions": [action.to_dict() for action in queue],
        }
        try:
            serialized = json.dumps(output_data, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise PersistenceError(
                code="serialize_error",
                message=f"Offline queue is not JSON serializable: {e}",
                details={"key": self._key},
            ) from e
        self._storage.set(self._key, serialized)

    def clear(self) -> None:
        """Persist an empty queue."""
        self.save([])

    def _report_corrupt(self, message: str, cause: Exception) -> None:
        self._last_error = QueueCorruptError(
            code="queue_corrupt",
            message=f"{message}: {cause}",
            details={"key": self._key},
        )
        if self._logger is not None:
            self._logger.log_error(
                component="DurableActionStore",
                message=f"{message}; starting with an empty queue",
                error=self._last_error,
                additional_data={"key": self._key},
            )
