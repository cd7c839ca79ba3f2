"""
Authentication – sign-up, role-checked sign-in, sign-out and session tokens.

Sign-in is a two-stage check: the backend validates the credentials, then the
stored role is compared with the role the user claimed on the form. A
mismatch signs the freshly created backend session back out before the error
is raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt

from medchain.models.models import Role
from medchain.services.forms import SignUpPayload
from medchain.services.record_store.base_store import (
    AuthenticationError,
    AuthSession,
    RecordStore,
)
from medchain.services.user_service import fetch_user_by_id

logger = logging.getLogger("medchain.auth")

TOKEN_ALGORITHM = "HS256"


class RoleMismatchError(AuthenticationError):
    """The claimed sign-in role differs from the role stored for the account."""

    def __init__(self, claimed: Role, stored: Role):
        super().__init__(
            f"You do not have permissions to access the {claimed.value} dashboard. "
            f"Your role is {stored.value}."
        )
        self.claimed = claimed
        self.stored = stored


@dataclass(frozen=True)
class SessionContext:
    """
    The signed-in identity handed to every view.
    Created at sign-in, discarded at sign-out, never mutated in between.
    """
    user_id: str
    email: str
    name: str
    role: Role
    access_token: str = ""
    refresh_token: str = ""
    expires_at: Optional[int] = None

    @property
    def dashboard_path(self) -> str:
        return self.role.dashboard_path

    def auth_session(self) -> AuthSession:
        return AuthSession(
            user_id=self.user_id,
            email=self.email,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            metadata={"role": self.role.value, "name": self.name},
            expires_at=self.expires_at,
        )

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "dashboard": self.dashboard_path,
        }


def sign_up(store: RecordStore, payload: SignUpPayload) -> AuthSession:
    """Create the backend account. Raises AuthenticationError on rejection."""
    session = store.sign_up(payload.email, payload.password, payload.metadata())
    logger.info("Account created for %s (%s)", payload.email, payload.role.value)
    return session


def sign_in(store: RecordStore, email: str, password: str, claimed_role: Role) -> SessionContext:
    """
    Authenticate and verify the claimed role.

    Raises AuthenticationError for bad credentials or a missing user record,
    and RoleMismatchError (after signing out) when the roles differ.
    """
    claimed_role = Role(claimed_role)
    auth = store.sign_in_with_password(email, password)
    store = store.bind(auth)

    user = fetch_user_by_id(store, auth.user_id)
    if user is None or user.role is None:
        _compensating_sign_out(store)
        raise AuthenticationError("User details not found")

    if user.role is not claimed_role:
        logger.warning(
            "Role mismatch for %s: claimed %s, stored %s",
            email, claimed_role.value, user.role.value,
        )
        _compensating_sign_out(store)
        raise RoleMismatchError(claimed_role, user.role)

    try:
        store.update_user({"role": user.role.value})
    except AuthenticationError as exc:
        logger.warning("Could not store verified role for %s: %s", email, exc)

    logger.info("Signed in %s as %s", email, user.role.value)
    return SessionContext(
        user_id=user.id,
        email=user.email or auth.email,
        name=user.name,
        role=user.role,
        access_token=auth.access_token,
        refresh_token=auth.refresh_token,
        expires_at=auth.expires_at,
    )


def _compensating_sign_out(store: RecordStore) -> None:
    try:
        store.sign_out()
    except AuthenticationError as exc:
        logger.error("Sign-out after failed role check did not complete: %s", exc)


def sign_out(store: RecordStore, session: SessionContext) -> None:
    store.sign_out()
    logger.info("Signed out %s", session.email)


# ─── Session tokens ───


def issue_token(session: SessionContext, secret: str, ttl_hours: int = 12) -> str:
    """
    Sign a session token. It expires no later than the backend access
    token it carries.
    """
    now = datetime.now(timezone.utc)
    expires = now + timedelta(hours=ttl_hours)
    if session.expires_at:
        expires = min(expires, datetime.fromtimestamp(session.expires_at, tz=timezone.utc))
    payload = {
        "user_id": session.user_id,
        "email": session.email,
        "name": session.name,
        "role": session.role.value,
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "backend_expires_at": session.expires_at,
        "exp": expires,
        "iat": now,
    }
    return pyjwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def decode_token(token: str, secret: str) -> SessionContext:
    """Raises pyjwt.InvalidTokenError (or a subclass) for bad tokens."""
    payload = pyjwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    role = Role.parse(payload.get("role"))
    if role is None or not payload.get("user_id"):
        raise pyjwt.InvalidTokenError("Token is missing identity claims.")
    return SessionContext(
        user_id=payload["user_id"],
        email=payload.get("email", ""),
        name=payload.get("name", ""),
        role=role,
        access_token=payload.get("access_token", ""),
        refresh_token=payload.get("refresh_token", ""),
        expires_at=payload.get("backend_expires_at"),
    )
