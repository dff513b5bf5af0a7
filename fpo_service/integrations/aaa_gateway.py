"""
AAA Service Integration Gateway.

All outbound HTTP calls to the AAA (identity / access-control) service go
through this class. Direct `requests` calls in services or blueprints are
FORBIDDEN.

  - Bearer service token injected on every call
  - Timeout: AAA_TIMEOUT_SECONDS (default 10 s), clipped per call by the caller
  - Retry: max 2 extra attempts with backoff (1 s → 4 s), transient failures only
    (timeout, connection error, HTTP 429 / 502 / 503 / 504)
  - Application-level rejections (any other non-2xx) return immediately
  - Structured GatewayResult returned to the service; never raises

Testability: pass a mock `session` to AAAGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from flask import current_app

from fpo_service.constants import AAA_ORG_TYPE_FPO

logger = logging.getLogger(__name__)

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]    # sleep[0] after 1st fail, sleep[1] after 2nd
_TRANSIENT_STATUS = frozenset({429, 502, 503, 504})

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 10

EXTENSION_KEY = "aaa_gateway"


class GatewayResult:
    """Structured return value from AAAGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict), else None.
        error:          Human-readable error message or None.
        duration_ms:    Total latency across attempts in milliseconds.
        transient:      True if the final failure was a transient one.
        timed_out:      True if the final failure was a timeout.
        attempts:       Number of HTTP attempts made.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | None,
        error: str | None,
        duration_ms: int,
        *,
        transient: bool = False,
        timed_out: bool = False,
        attempts: int = 1,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.transient = transient
        self.timed_out = timed_out
        self.attempts = attempts

    def to_log_dict(self) -> dict:
        """Return fields suitable for audit ``details``."""
        return {
            "http_status_code": self.status_code,
            "error_message": self.error,
            "duration_ms": self.duration_ms,
            "transient": self.transient,
            "timed_out": self.timed_out,
            "attempts": self.attempts,
        }

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class AAAGateway:
    """AAA service REST API gateway.

    One instance per app, stored in ``app.extensions["aaa_gateway"]`` by
    ``init_aaa_gateway``. Pass a custom `session` in tests to intercept HTTP
    calls without making real network requests.

    Usage:
        from fpo_service.integrations.aaa_gateway import get_aaa_gateway
        result = get_aaa_gateway().create_organization("Green Valley FPO", {})
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        base_url: str = "",
        token: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
        retry_max: int = _RETRY_MAX,
        backoff_seconds: list[float] | None = None,
    ) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_max = retry_max
        self.backoff_seconds = list(backoff_seconds if backoff_seconds is not None else _RETRY_BACKOFF_SECONDS)

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self, request_id: str | None = None) -> dict:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    def _backoff(self, attempt: int) -> float:
        if not self.backoff_seconds:
            return 0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds) - 1)]

    # ── Core request dispatcher ───────────────────────────────────────────────

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        timeout: float | None = None,
        deadline: float | None = None,
        request_id: str | None = None,
    ) -> GatewayResult:
        """Execute an authenticated request to the AAA service with retries.

        Args:
            method:     HTTP verb ("GET", "POST", ...).
            path:       Path below the configured base URL.
            json_body:  JSON-serialisable request body (optional).
            timeout:    Per-attempt timeout in seconds (defaults to the gateway's).
            deadline:   ``time.monotonic()`` value after which no further
                        attempt is started.
            request_id: Propagated as X-Request-ID.

        Returns:
            GatewayResult - always returns (never raises). Callers check .ok.
        """
        url = f"{self.base_url}{path}"
        per_call = timeout if timeout is not None else self.timeout
        last_error = "Unknown error"
        last_status: int | None = None
        transient = False
        timed_out = False
        t_start = time.perf_counter()
        attempt = 0

        for attempt in range(self.retry_max + 1):  # 0, 1, 2
            kwargs: dict[str, Any] = {
                "headers": self._headers(request_id),
                "timeout": per_call,
            }
            if json_body is not None:
                kwargs["json"] = json_body

            try:
                resp = self.session.request(method, url, **kwargs)
                last_status = resp.status_code

                if resp.ok:
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(
                        ok=True,
                        status_code=resp.status_code,
                        data=data,
                        error=None,
                        duration_ms=int((time.perf_counter() - t_start) * 1000),
                        attempts=attempt + 1,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                timed_out = resp.status_code == 504
                transient = resp.status_code in _TRANSIENT_STATUS
                logger.warning(
                    "AAA request failed attempt=%d/%d status=%d %s %s",
                    attempt + 1, self.retry_max + 1, resp.status_code, method, url,
                )
                if not transient:
                    break

            except requests.Timeout:
                last_status = None
                last_error = f"Request timed out after {per_call}s"
                transient = timed_out = True
                logger.warning(
                    "AAA request timed out attempt=%d/%d %s %s",
                    attempt + 1, self.retry_max + 1, method, url,
                )

            except requests.ConnectionError as exc:
                last_status = None
                last_error = str(exc)[:500]
                transient, timed_out = True, False
                logger.warning(
                    "AAA connection error attempt=%d/%d %s %s error=%s",
                    attempt + 1, self.retry_max + 1, method, url, last_error,
                )

            except requests.RequestException as exc:
                last_status = None
                last_error = str(exc)[:500]
                transient = timed_out = False
                logger.error("AAA request error %s %s error=%s", method, url, last_error)
                break

            if attempt >= self.retry_max:
                break

            sleep_s = self._backoff(attempt)
            if deadline is not None and time.monotonic() + sleep_s >= deadline:
                logger.info("Not retrying AAA request %s %s: deadline reached", method, url)
                break
            logger.info("Retrying AAA request in %ss (attempt %d)", sleep_s, attempt + 2)
            time.sleep(sleep_s)

        return GatewayResult(
            ok=False,
            status_code=last_status,
            data=None,
            error=last_error,
            duration_ms=int((time.perf_counter() - t_start) * 1000),
            transient=transient,
            timed_out=timed_out,
            attempts=attempt + 1,
        )

    # ── AAA operations ────────────────────────────────────────────────────────

    def check_permission(
        self, actor_id: str, resource: str, action: str, org_id: str | None = None, **kwargs,
    ) -> GatewayResult:
        """Ask the AAA service whether ``actor_id`` may perform ``action``.

        Returns:
            GatewayResult; on success ``data["allowed"]`` is a bool.
        """
        body = {"user_id": actor_id, "resource": resource, "action": action}
        if org_id:
            body["org_id"] = org_id
        return self.request("POST", "/api/v1/authz/check", json_body=body, **kwargs)

    def create_organization(self, name: str, metadata: dict | None = None, **kwargs) -> GatewayResult:
        """Create the FPO's organization. ``data["org_id"]`` holds the new id."""
        body = {"name": name, "type": AAA_ORG_TYPE_FPO, "metadata": metadata or {}}
        return self.request("POST", "/api/v1/organizations", json_body=body, **kwargs)

    def create_user(self, profile: dict, **kwargs) -> GatewayResult:
        """Create a user identity. ``data["id"]`` holds the new user id."""
        return self.request("POST", "/api/v1/users", json_body=dict(profile), **kwargs)

    def assign_default_roles(self, org_id: str, catalog: dict, **kwargs) -> GatewayResult:
        """Apply the default group / permission catalog to an organization."""
        return self.request(
            "POST", f"/api/v1/organizations/{org_id}/default-roles",
            json_body=catalog, **kwargs,
        )


# ── App wiring ─────────────────────────────────────────────────────────────

def init_aaa_gateway(app, gateway: AAAGateway | None = None) -> AAAGateway:
    """Build the gateway from app config and register it on the app."""
    if gateway is None:
        gateway = AAAGateway(
            base_url=app.config.get("AAA_BASE_URL", ""),
            token=app.config.get("AAA_SERVICE_TOKEN", ""),
            timeout=app.config.get("AAA_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT),
            retry_max=app.config.get("AAA_RETRY_MAX", _RETRY_MAX),
            backoff_seconds=app.config.get("AAA_RETRY_BACKOFF_SECONDS", _RETRY_BACKOFF_SECONDS),
        )
    app.extensions[EXTENSION_KEY] = gateway
    return gateway


def get_aaa_gateway():
    """Return the gateway registered on the current app."""
    return current_app.extensions[EXTENSION_KEY]
