"""Health check endpoints for liveness and readiness probes."""
from typing import Literal

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mailsync.sync.types import SyncPhase

router = APIRouter(prefix="/health", tags=["health"])

_READY_PHASES: frozenset[SyncPhase] = frozenset(
    {SyncPhase.BACKFILLING, SyncPhase.STREAMING}
)


class LivenessResponse(BaseModel):
    """Response model for liveness probe.

    Attributes:
        status: Always 'alive' when process is running.
    """

    status: Literal["alive"]


class ReadinessCheck(BaseModel):
    """Individual dependency check result.

    Attributes:
        name: Identifier for the dependency being checked.
        status: Result of the check ('ok' or 'failed').
        message: Error details when status is 'failed'.
    """

    name: str
    status: Literal["ok", "failed"]
    message: str | None = None


class ReadinessResponse(BaseModel):
    """Response model for readiness probe.

    Attributes:
        status: Overall readiness ('ready' or 'not_ready').
        phase: Current sync engine phase.
        checks: List of individual dependency check results.
    """

    status: Literal["ready", "not_ready"]
    phase: SyncPhase
    checks: list[ReadinessCheck]


async def _check_backend(name: str, backend: object) -> ReadinessCheck:
    """Ping a gateway and turn the answer into a check result.

    Args:
        name: Check name.
        backend: Gateway exposing an async ping().

    Returns:
        Check result with status and optional error message.
    """
    ping = getattr(backend, "ping", None)
    if ping is None:
        return ReadinessCheck(name=name, status="failed", message="Not configured")
    if await ping():
        return ReadinessCheck(name=name, status="ok")
    return ReadinessCheck(name=name, status="failed", message="Unreachable")


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe endpoint.

    Returns:
        Liveness status response.
    """
    return LivenessResponse(status="alive")


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> JSONResponse:
    """Readiness probe endpoint.

    Ready while the engine is backfilling or streaming and both
    MongoDB and Elasticsearch answer a ping. Returns 503 otherwise.

    Args:
        request: FastAPI request (provides access to app state).

    Returns:
        Readiness status with individual check results.
    """
    state = request.app.state
    phase: SyncPhase = state.engine.phase
    checks = [
        ReadinessCheck(
            name="sync",
            status="ok" if phase in _READY_PHASES else "failed",
            message=None if phase in _READY_PHASES else f"phase={phase.value}",
        ),
        await _check_backend("mongodb", state.source),
        await _check_backend("elasticsearch", state.index),
    ]
    all_ok = all(c.status == "ok" for c in checks)
    response = ReadinessResponse(
        status="ready" if all_ok else "not_ready",
        phase=phase,
        checks=checks,
    )
    code = status.HTTP_200_OK if all_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response.model_dump(mode="json"), status_code=code)
