"""
Pytest configuration & fixtures for MedChain backend tests.

Key design decisions:
  - The hosted record store is replaced by FakeRecordStore, an in-memory
    RecordStore holding tables, accounts and a log of auth calls.
  - The APScheduler instance is replaced by FakeScheduler so no background
    threads run; tests fire polling jobs explicitly.
  - Ids come from a sequential generator so responses are predictable.
  - Seeds one account per role.
"""

import copy
import itertools
import os
import sys
import time
from collections import defaultdict

import pytest

# ── 1. Ensure backend package is importable ──
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# ── 2. Set test environment BEFORE anything else ──
os.environ["SUPABASE_URL"] = "https://medchain-test.supabase.co"
os.environ["SUPABASE_KEY"] = "test-anon-key-not-real"
os.environ["FLASK_SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET"] = "test-jwt-secret-long-enough-for-hs256-signing"
os.environ["APP_ENV"] = "testing"

# ── 3. NOW safe to import application modules ──
from medchain.main import create_app
from medchain.models.models import Role
from medchain.services.id_generator import IdGenerator
from medchain.services.record_store.base_store import (
    AuthenticationError,
    AuthSession,
    RecordStore,
    RecordStoreError,
)

PASSWORD = "Passw0rd!"

USERS = {
    Role.MANUFACTURER: {"id": "mfr-1", "name": "Acme Pharma", "email": "maker@acmepharma.com"},
    Role.DISTRIBUTOR: {"id": "dist-1", "name": "FastFreight", "email": "ops@fastfreight.com"},
    Role.PHARMACIST: {"id": "pharm-1", "name": "Corner Pharmacy", "email": "rx@cornerpharmacy.com"},
    Role.DOCTOR: {"id": "doc-1", "name": "Dr. Rao", "email": "rao@cityclinic.com"},
}


# ═══════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════

class _Backend:
    """State shared by a FakeRecordStore and every store bound from it."""

    def __init__(self):
        self.tables = defaultdict(list)
        self.accounts = {}
        self.calls = []
        self.failing = set()
        self.row_ids = itertools.count(1)
        self.user_ids = itertools.count(1)
        self.session_ids = itertools.count(1)
        self.session_lifetime = 3600


class FakeRecordStore(RecordStore):
    """In-memory record store with the same semantics as the hosted one."""

    def __init__(self, backend=None, session=None):
        self._backend = backend or _Backend()
        self._session = session

    # --- test helpers ---

    @property
    def calls(self):
        return self._backend.calls

    def rows(self, table):
        return self._backend.tables[table]

    def seed(self, table, **row):
        self._backend.tables[table].append(dict(row))
        return row

    def fail_on(self, table):
        self._backend.failing.add(table)

    def expire_sessions_in(self, seconds):
        """Backend access tokens issued from now on lapse after *seconds*."""
        self._backend.session_lifetime = seconds

    def tokens_used(self, table):
        """Access tokens sent with each read of *table*, in call order."""
        return [c[2] for c in self.calls if c[:2] == ("select", table)]

    def confirm(self, table, key, value, tx_id):
        for row in self.rows(table):
            if row.get(key) == value:
                row["blockchain_tx_id"] = tx_id

    def add_account(self, user_id, email, password, role, name):
        self._backend.accounts[email] = {"user_id": user_id, "password": password, "metadata": {}}
        self.seed("users", id=user_id, name=name, email=email, role=role.value, active=True)

    def _check(self, table):
        if table in self._backend.failing:
            raise RecordStoreError(f"{table} is unavailable")

    # --- tables ---

    def select(self, table, filters=None, order_by=None, descending=True, or_filters=None):
        self._check(table)
        self.calls.append(("select", table, self._session.access_token if self._session else None))
        rows = [
            r for r in self.rows(table)
            if all(r.get(k) == v for k, v in (filters or {}).items())
            and (not or_filters or any(r.get(k) == v for k, v in or_filters.items()))
        ]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by) or "", reverse=descending)
        return copy.deepcopy(rows)

    def select_one(self, table, filters):
        rows = self.select(table, filters)
        return rows[0] if rows else None

    def insert(self, table, rows):
        self._check(table)
        stored = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(next(self._backend.row_ids)))
            self.rows(table).append(row)
            stored.append(copy.deepcopy(row))
        return stored

    def update(self, table, filters, patch):
        self._check(table)
        self.calls.append(("update", table, dict(filters)))
        for row in self.rows(table):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(patch)

    # --- auth ---

    def sign_up(self, email, password, metadata):
        if email in self._backend.accounts:
            raise AuthenticationError("User already registered")
        user_id = f"user-{next(self._backend.user_ids)}"
        self._backend.accounts[email] = {"user_id": user_id, "password": password, "metadata": metadata}
        self.seed("users", id=user_id, name=metadata.get("name", ""), email=email,
                  role=metadata.get("role"), active=True)
        self.calls.append(("sign_up", email))
        return AuthSession(user_id=user_id, email=email, metadata=dict(metadata))

    def sign_in_with_password(self, email, password):
        account = self._backend.accounts.get(email)
        if account is None or account["password"] != password:
            raise AuthenticationError("Invalid login credentials")
        self.calls.append(("sign_in", account["user_id"]))
        n = next(self._backend.session_ids)
        return AuthSession(
            user_id=account["user_id"],
            email=email,
            access_token=f"access-{account['user_id']}-{n}",
            refresh_token=f"refresh-{account['user_id']}-{n}",
            expires_at=int(time.time()) + self._backend.session_lifetime,
        )

    def sign_out(self):
        self.calls.append(("sign_out", self._session.user_id if self._session else None))

    def get_session(self):
        return self._session

    def update_user(self, metadata):
        self.calls.append(("update_user", self._session.user_id if self._session else None, dict(metadata)))

    def bind(self, session):
        return FakeRecordStore(self._backend, session)


class FakeJob:
    def __init__(self, scheduler, job_id, func, options):
        self.scheduler = scheduler
        self.id = job_id
        self.func = func
        self.options = options

    def remove(self):
        self.scheduler.jobs.pop(self.id, None)


class FakeScheduler:
    """Records jobs instead of running them on a thread."""

    def __init__(self):
        self.jobs = {}
        self.running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False

    def add_job(self, func, trigger, id, **options):
        job = FakeJob(self, id, func, dict(options, trigger=trigger))
        self.jobs[id] = job
        return job

    def run_pending(self):
        for job in list(self.jobs.values()):
            job.func()


class SequentialIdGenerator(IdGenerator):
    def __init__(self):
        self._counter = itertools.count(1)

    def new_id(self, prefix):
        return f"{prefix}_{next(self._counter)}"


# ═══════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════

@pytest.fixture
def store():
    """Fresh fake store with one account per role."""
    fake = FakeRecordStore()
    for role, user in USERS.items():
        fake.add_account(user["id"], user["email"], PASSWORD, role, user["name"])
    return fake


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def as_user(store):
    """Return the store bound to the session of the given role's account."""
    def _bind(role):
        user = USERS[role]
        return store.bind(AuthSession(user_id=user["id"], email=user["email"]))
    return _bind


@pytest.fixture
def app(store, scheduler):
    """Create application for testing."""
    application = create_app(store=store, id_generator=SequentialIdGenerator(), scheduler=scheduler)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture
def auth_headers(client):
    """Sign in as the seeded account for a role and return valid auth headers."""
    def _headers(role):
        user = USERS[role]
        resp = client.post("/api/auth/signin", json={
            "email": user["email"],
            "password": PASSWORD,
            "role": role.value,
        })
        token = resp.get_json()["token"]
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    return _headers
