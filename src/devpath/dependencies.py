"""Shared FastAPI dependencies."""

from fastapi import Request

from devpath.config import Settings
from devpath.database import get_session_factory
from devpath.progression.locks import LocalUserLocks, RedisUserLocks
from devpath.progression.orchestrator import ProgressionOrchestrator
from devpath.redis_client import get_redis_or_none


def build_orchestrator(settings: Settings) -> ProgressionOrchestrator:
    """Wire the orchestrator from settings and the initialized DB/Redis pools."""
    redis = get_redis_or_none()
    if settings.use_redis_locks and redis is not None:
        locks = RedisUserLocks(
            redis,
            timeout=settings.lock_timeout_seconds,
            blocking_timeout=settings.lock_blocking_timeout_seconds,
        )
    else:
        locks = LocalUserLocks()
    return ProgressionOrchestrator(
        get_session_factory(),
        locks=locks,
        redis=redis,
        thresholds=settings.level_thresholds,
        policy=settings.xp_policy,
    )


def get_orchestrator(request: Request) -> ProgressionOrchestrator:
    """The application-wide orchestrator built at startup."""
    return request.app.state.orchestrator
