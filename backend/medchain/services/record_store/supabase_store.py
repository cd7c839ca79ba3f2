"""
Supabase adapter for the record store.
Sources:
  - PostgREST tables: drugs, drug_status_updates, shipments,
    shipment_status_updates, prescriptions, users
  - GoTrue auth API: sign-up, password sign-in, sign-out, user metadata

Every SDK or transport failure is re-raised as RecordStoreError (tables) or
AuthenticationError (auth) so callers never see SDK-specific exceptions.
"""

import logging
from typing import Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AuthError, Client, create_client

from medchain.services.record_store.base_store import (
    AuthenticationError,
    AuthSession,
    RecordStore,
    RecordStoreError,
)

logger = logging.getLogger("medchain.store.supabase")


def _session_from_response(user, session) -> AuthSession:
    return AuthSession(
        user_id=user.id,
        email=user.email or "",
        access_token=session.access_token if session else "",
        refresh_token=session.refresh_token if session else "",
        metadata=dict(user.user_metadata or {}),
        expires_at=getattr(session, "expires_at", None) if session else None,
    )


class SupabaseRecordStore(RecordStore):
    """Record store backed by a hosted Supabase project."""

    def __init__(self, url: str, key: str, session: Optional[AuthSession] = None):
        self._url = url
        self._key = key
        self._session = session
        self._client: Client = create_client(url, key)
        if session and session.access_token:
            self._client.postgrest.auth(session.access_token)

    def bind(self, session: AuthSession) -> "SupabaseRecordStore":
        return SupabaseRecordStore(self._url, self._key, session=session)

    # --- Tables ---

    def select(self, table, filters=None, order_by=None, descending=True, or_filters=None):
        query = self._client.table(table).select("*")
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        if or_filters:
            query = query.or_(",".join(f"{c}.eq.{v}" for c, v in or_filters.items()))
        if order_by:
            query = query.order(order_by, desc=descending)
        return self._execute(query, table)

    def select_one(self, table, filters):
        query = self._client.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        rows = self._execute(query.limit(1), table)
        return rows[0] if rows else None

    def insert(self, table, rows):
        return self._execute(self._client.table(table).insert(rows), table)

    def update(self, table, filters, patch):
        query = self._client.table(table).update(patch)
        for column, value in filters.items():
            query = query.eq(column, value)
        self._execute(query, table)

    def _execute(self, query, table: str) -> list[dict]:
        try:
            response = query.execute()
        except (APIError, httpx.HTTPError) as exc:
            raise RecordStoreError(f"{table}: {exc}") from exc
        return list(response.data or [])

    # --- Auth ---

    def sign_up(self, email, password, metadata):
        try:
            response = create_client(self._url, self._key).auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": metadata},
            })
        except (AuthError, httpx.HTTPError) as exc:
            raise AuthenticationError(str(exc)) from exc
        if not response.user:
            raise AuthenticationError("Sign-up did not return a user.")
        return _session_from_response(response.user, response.session)

    def sign_in_with_password(self, email, password):
        # A throwaway client keeps the shared one free of per-user auth state.
        try:
            response = create_client(self._url, self._key).auth.sign_in_with_password({
                "email": email,
                "password": password,
            })
        except (AuthError, httpx.HTTPError) as exc:
            raise AuthenticationError(str(exc)) from exc
        if not response.user or not response.session:
            raise AuthenticationError("Invalid email or password.")
        return _session_from_response(response.user, response.session)

    def sign_out(self):
        try:
            self._restore_session()
            self._client.auth.sign_out()
        except (AuthError, httpx.HTTPError) as exc:
            raise AuthenticationError(str(exc)) from exc
        finally:
            self._session = None

    def get_session(self):
        try:
            self._restore_session()
            session = self._client.auth.get_session()
        except (AuthError, httpx.HTTPError) as exc:
            logger.warning("Could not read auth session: %s", exc)
            return None
        if not session:
            return None
        return _session_from_response(session.user, session)

    def update_user(self, metadata):
        try:
            self._restore_session()
            self._client.auth.update_user({"data": metadata})
        except (AuthError, httpx.HTTPError) as exc:
            raise AuthenticationError(str(exc)) from exc

    def _restore_session(self) -> None:
        """Load the bound tokens into the SDK's auth client before auth calls."""
        if not self._session or not self._session.access_token:
            return
        if self._client.auth.get_session() is None:
            self._client.auth.set_session(
                self._session.access_token, self._session.refresh_token
            )
