"""
Shared pytest fixtures for the FPO Lifecycle Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - aaa: call-counting FakeAAAGateway installed on the app (autouse)
    - client: Flask test client (function-scoped)
    - fpo_data: valid registration payload factory
    - make_fpo: registers a DRAFT FPO through the lifecycle service
    - force_status: puts an FPO into any status without the lifecycle rules
"""

import itertools

import pytest
from sqlalchemy import update

from fpo_service import create_app
from fpo_service.integrations.aaa_gateway import EXTENSION_KEY, GatewayResult
from fpo_service.models import db as _db
from fpo_service.models.fpo import FPORef


# ── Fake AAA service ─────────────────────────────────────────────────────


class FakeAAAGateway:
    """In-memory stand-in for AAAGateway.

    Counts every call per method, records payloads, and returns queued
    failures before falling back to success. ``hooks`` run once, before the
    named method answers, which lets tests interleave work (cancellation,
    a competing transition) at an exact point.
    """

    METHODS = ("check_permission", "create_organization", "create_user", "assign_default_roles")

    def __init__(self):
        self.base_url = "http://aaa.fake"
        self.calls = {name: 0 for name in self.METHODS}
        self.payloads = {name: [] for name in self.METHODS}
        self._failures = {name: [] for name in self.METHODS}
        self.hooks = {}
        self.denied = set()
        self.deny_all = False
        self.org_id_override = None
        self._ids = itertools.count(1)

    # ── test controls ────────────────────────────────────────────────

    def fail(self, method, *, times=1, status_code=503, error=None, transient=True, timed_out=False):
        """Queue ``times`` failed results for ``method``."""
        for _ in range(times):
            self._failures[method].append(GatewayResult(
                ok=False,
                status_code=status_code,
                data=None,
                error=error or f"HTTP {status_code}: simulated failure",
                duration_ms=1,
                transient=transient,
                timed_out=timed_out,
            ))

    def deny(self, verb):
        self.denied.add(verb)

    def on(self, method, fn):
        self.hooks[method] = fn

    # ── internals ────────────────────────────────────────────────────

    def _enter(self, method, payload):
        self.calls[method] += 1
        self.payloads[method].append(payload)
        hook = self.hooks.pop(method, None)
        if hook is not None:
            hook()
        if self._failures[method]:
            return self._failures[method].pop(0)
        return None

    @staticmethod
    def _ok(data):
        return GatewayResult(ok=True, status_code=200, data=data, error=None, duration_ms=1)

    # ── gateway surface ──────────────────────────────────────────────

    def check_permission(self, actor_id, resource, action, org_id=None, **kwargs):
        failed = self._enter("check_permission", {
            "user_id": actor_id, "resource": resource, "action": action, "org_id": org_id,
        })
        if failed:
            return failed
        allowed = not self.deny_all and action not in self.denied
        return self._ok({"allowed": allowed})

    def create_organization(self, name, metadata=None, **kwargs):
        failed = self._enter("create_organization", {"name": name, "metadata": metadata or {}})
        if failed:
            return failed
        return self._ok({"org_id": self.org_id_override or f"org-{next(self._ids)}"})

    def create_user(self, profile, **kwargs):
        failed = self._enter("create_user", dict(profile))
        if failed:
            return failed
        return self._ok({"id": f"user-{next(self._ids)}"})

    def assign_default_roles(self, org_id, catalog, **kwargs):
        failed = self._enter("assign_default_roles", {"org_id": org_id, "catalog": catalog})
        if failed:
            return failed
        return self._ok({})


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture(autouse=True)
def aaa(app):
    """Fresh FakeAAAGateway per test."""
    previous = app.extensions.get(EXTENSION_KEY)
    fake = FakeAAAGateway()
    app.extensions[EXTENSION_KEY] = fake
    yield fake
    app.extensions[EXTENSION_KEY] = previous


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


_reg_counter = itertools.count(1)


def fpo_payload(**overrides):
    n = next(_reg_counter)
    data = {
        "name": f"Green Valley FPO {n}",
        "registration_number": f"FPO-REG-{n:05d}",
        "description": "Paddy and pulses collective",
        "ceo_profile": {
            "first_name": "Asha",
            "last_name": "Rao",
            "phone_number": f"+9198765{n:05d}",
        },
        "business_config": {"crops": ["paddy", "tur"]},
        "metadata": {"district": "Raichur"},
    }
    data.update(overrides)
    return data


@pytest.fixture()
def fpo_data():
    """Factory for a valid registration payload (unique registration number)."""
    return fpo_payload


@pytest.fixture()
def make_fpo():
    """Register a DRAFT FPO and return its serialized dict."""
    from fpo_service.services.fpo_lifecycle import register_fpo

    def _make(**overrides):
        return register_fpo(fpo_payload(**overrides), created_by="registrar-1")
    return _make


@pytest.fixture()
def force_status():
    """Set lifecycle columns directly (test setup only)."""
    def _force(fpo_id, status, **fields):
        _db.session.execute(
            update(FPORef)
            .where(FPORef.id == fpo_id)
            .values(status=status, **fields)
            .execution_options(synchronize_session=False)
        )
        _db.session.commit()
        _db.session.expire_all()
    return _force
