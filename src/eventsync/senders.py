"""
Action senders for the offline action queue.

A sender delivers one PendingAction and either returns the server's response
or raises:
- ActionNetworkError when the action never got a definitive answer (retain it)
- ActionRejectedError when the server refused the content (drop it)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

import httpx

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import ActionNetworkError, ActionRejectedError
from .models import PendingAction

if TYPE_CHECKING:
    from .session import SyncSession


# Rejection codes derived from the HTTP status when the body carries none
STATUS_REJECTION_CODES = {
    400: "INVALID_QR",
    403: "ACCESS_DENIED",
    404: "TICKET_NOT_FOUND",
}


@runtime_checkable
class ActionSender(Protocol):
    """Delivers a single action to the server."""

    @abstractmethod
    async def send(self, action: PendingAction) -> Any:
        ...


def _json_or_none(response: httpx.Response) -> Optional[dict]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class HttpActionSender:
    """
    POSTs actions to a REST endpoint with httpx.

    The action id goes out as the Idempotency-Key header so a retried
    delivery has at most one effect on the server.
    """

    def __init__(
        self,
        base_url: str,
        path: str = "/api/tickets/scan",
        timeout: float = 15.0,
        token_provider: Optional[Any] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the sender.

        Args:
            base_url: Server base URL
            path: Path actions are posted to
            timeout: Request timeout in seconds
            token_provider: Optional auth collaborator with get_token()
            client: Optional preconfigured httpx.AsyncClient (tests use MockTransport)
            logger: Optional audit logger
        """
        self._url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
        self._timeout = timeout
        self._token_provider = token_provider
        self._client = client
        self._owns_client = client is None
        self._logger = logger

    async def __aenter__(self) -> "HttpActionSender":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self, action: PendingAction) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": action.id,
        }
        token = self._token_provider.get_token() if self._token_provider is not None else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def send(self, action: PendingAction) -> Any:
        client = self._ensure_client()
        body = {**action.payload, "actionId": action.id}

        try:
            response = await client.post(self._url, json=body, headers=self._headers(action))
        except httpx.TimeoutException as e:
            raise ActionNetworkError(
                code="NETWORK_ERROR",
                message=f"Request timed out after {self._timeout}s",
            ) from e
        except httpx.HTTPError as e:
            raise ActionNetworkError(
                code="NETWORK_ERROR",
                message=f"Request failed: {e}",
            ) from e

        status = response.status_code
        data = _json_or_none(response)

        if status < 400:
            if self._logger is not None:
                self._logger.log(
                    LogLevel.DEBUG,
                    "HttpActionSender",
                    f"Delivered {action.type} ({action.id})",
                    {"status_code": status},
                )
            return data

        server_code = (data or {}).get("code")
        server_message = (data or {}).get("error") or (data or {}).get("message") or response.reason_phrase

        if status == 429:
            raise ActionNetworkError(
                code="RATE_LIMITED",
                message="Rate limited by server",
                details={"status_code": status},
            )
        if status >= 500:
            raise ActionNetworkError(
                code="SERVER_ERROR",
                message=f"Server error: {status}",
                details={"status_code": status},
            )
        if status == 401:
            # The token may be refreshed; keep the action
            raise ActionNetworkError(
                code="auth_required",
                message="Authentication required",
                details={"status_code": status},
            )

        raise ActionRejectedError(
            code=server_code or STATUS_REJECTION_CODES.get(status, "UNKNOWN_ERROR"),
            message=str(server_message or f"Rejected with HTTP {status}"),
            details={"status_code": status, "response": data},
        )


class SessionActionSender:
    """Sends actions over the live session instead of a separate REST call."""

    def __init__(self, session: "SyncSession") -> None:
        self._session = session

    async def send(self, action: PendingAction) -> Any:
        ack = await self._session.send(action.type, action.to_wire())
        if isinstance(ack, dict) and ack.get("success") is False:
            raise ActionRejectedError(
                code=str(ack.get("code") or "UNKNOWN_ERROR"),
                message=str(ack.get("error") or "Action rejected by server"),
                details={"response": ack},
            )
        return ack
