"""
Auth collaborator boundary.

Token issuance lives outside this package. The session only reads the
current token and clears it when the server rejects it.
"""

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class AuthProvider(Protocol):
    """Synchronous source of the current auth token."""

    @abstractmethod
    def get_token(self) -> Optional[str]:
        ...

    @abstractmethod
    def clear_token(self) -> None:
        ...


class StaticTokenProvider:
    """Holds a single token in memory until it is cleared or replaced."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token or None

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def clear_token(self) -> None:
        self._token = None
