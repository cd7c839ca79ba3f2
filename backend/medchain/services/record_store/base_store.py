"""
Base class for the hosted record store.
Every backend adapter exposes the same table and auth operations so the
data-access layer never depends on a particular SDK.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


class RecordStoreError(Exception):
    """Any failure reported by the record store or its transport."""


class AuthenticationError(Exception):
    """Credentials were rejected or the auth API refused the request."""


@dataclass
class AuthSession:
    """Authenticated session as returned by the backend auth API."""
    user_id: str
    email: str
    access_token: str = ""
    refresh_token: str = ""
    metadata: dict = field(default_factory=dict)
    expires_at: Optional[int] = None  # epoch seconds at which access_token lapses


class RecordStore(ABC):
    """Abstract base class for the backend-as-a-service client."""

    # --- Tables ---

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        or_filters: Optional[dict] = None,
    ) -> list[dict]:
        """
        Return all rows of *table* matching every equality in *filters* and,
        when given, at least one equality in *or_filters*.
        """
        ...

    @abstractmethod
    def select_one(self, table: str, filters: dict) -> Optional[dict]:
        """Return the single row matching *filters*, or None."""
        ...

    @abstractmethod
    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        """Insert *rows* and return them as stored."""
        ...

    @abstractmethod
    def update(self, table: str, filters: dict, patch: dict) -> None:
        """Apply *patch* to every row matching *filters*."""
        ...

    # --- Auth ---

    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: dict) -> AuthSession:
        ...

    @abstractmethod
    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...

    @abstractmethod
    def get_session(self) -> Optional[AuthSession]:
        ...

    @abstractmethod
    def update_user(self, metadata: dict) -> None:
        ...

    def bind(self, session: AuthSession) -> "RecordStore":
        """
        Return a store acting on behalf of *session*.
        Adapters without per-user state may return themselves.
        """
        return self
