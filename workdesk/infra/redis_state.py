from __future__ import annotations

import os
from functools import lru_cache

from redis import Redis
from redis.exceptions import RedisError

from workdesk.infra.db import InfrastructureError

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REVOKED_SESSION_PREFIX = "workdesk:session:revoked:"


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True)


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def revoke_session(token_id: str, ttl_seconds: int) -> None:
    if ttl_seconds <= 0:
        return
    try:
        get_redis().setex(f"{REVOKED_SESSION_PREFIX}{token_id}", ttl_seconds, "1")
    except RedisError as exc:
        raise InfrastructureError("session revocation failed") from exc


def is_session_revoked(token_id: str) -> bool:
    try:
        return bool(get_redis().exists(f"{REVOKED_SESSION_PREFIX}{token_id}"))
    except RedisError as exc:
        raise InfrastructureError("session revocation lookup failed") from exc
