"""Readiness probes for the CRUD API: database connectivity and OAuth providers."""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy import text

from .auth.registry import get_provider_registry
from .db import get_engine

HEALTH_CHECK_INTERVAL_SECONDS = 1.0
HEALTH_CHECK_TIMEOUT_SECONDS = 5.0

Probe = Callable[[], Optional[Dict[str, Any]]]


@dataclass
class HealthResult:
    """Outcome of one probed dependency."""

    service: str
    status: str
    attempts: int
    elapsed_seconds: float
    detail: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        # Empty meta/detail are left out of the JSON body.
        for optional in ("detail", "meta"):
            if not payload[optional]:
                del payload[optional]
        return payload


def poll_health(
    probe: Probe,
    *,
    service: str,
    interval_seconds: float = HEALTH_CHECK_INTERVAL_SECONDS,
    timeout_seconds: float = HEALTH_CHECK_TIMEOUT_SECONDS,
) -> HealthResult:
    """Call ``probe`` until it returns without raising, at most once per interval.

    The number of attempts is ``ceil(timeout / interval)``, never less than one.
    The last exception message becomes the result's ``detail``.
    """
    started = time.perf_counter()
    budget = max(1, int(math.ceil(timeout_seconds / interval_seconds)))
    failure = "Unhealthy"

    attempt = 0
    while attempt < budget:
        attempt += 1
        try:
            meta = probe() or {}
        except Exception as exc:  # pylint: disable=broad-except
            failure = str(exc) or exc.__class__.__name__
            if attempt < budget:
                time.sleep(interval_seconds)
            continue
        return HealthResult(service, "ok", attempt, time.perf_counter() - started, meta=meta)

    return HealthResult(service, "error", budget, time.perf_counter() - started, detail=failure)


def _ping_database() -> Dict[str, Any]:
    with get_engine().connect() as connection:
        value = connection.execute(text("SELECT 1")).scalar_one_or_none()
    return {"result": value}


def check_database_health(
    *,
    interval_seconds: float = HEALTH_CHECK_INTERVAL_SECONDS,
    timeout_seconds: float = HEALTH_CHECK_TIMEOUT_SECONDS,
) -> HealthResult:
    return poll_health(
        _ping_database,
        service="database",
        interval_seconds=interval_seconds,
        timeout_seconds=timeout_seconds,
    )


def check_provider_health() -> HealthResult:
    """Report which registered OAuth providers have client credentials.

    The check fails only when no provider is usable.
    """
    registry = get_provider_registry()
    configured = []
    unconfigured = []
    for provider_id in sorted(registry.list_providers()):
        if registry.get_provider(provider_id).is_configured():
            configured.append(provider_id)
        else:
            unconfigured.append(provider_id)

    meta: Dict[str, Any] = {"configured": configured}
    if unconfigured:
        meta["unconfigured"] = unconfigured
    if configured:
        return HealthResult("providers", "ok", 1, 0.0, meta=meta)
    return HealthResult("providers", "error", 1, 0.0, detail="No OAuth provider is configured", meta=meta)
