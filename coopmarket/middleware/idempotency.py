"""
Command idempotency gate.

A client that retries a write sends the same ``Idempotency-Key``. The first
request claims the key with an in-flight record (atomic SET NX); retries either
get the stored result replayed verbatim or a 409 while the original is running.
Only successful results are kept. Failures clear the key so the client can retry.

The gate never touches domain state. If the store is unreachable, requests
pass through ungated and the "idempotency degraded" warning is logged.
"""
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from coopmarket.core.config import IDEMPOTENCY_INFLIGHT_TTL_SEC, IDEMPOTENCY_REPLAY_TTL_SEC
from coopmarket.core.errors import ConflictError
from coopmarket.core.exception_handlers import error_body
from coopmarket.core.redis import get_redis
from coopmarket.events.canonical import canonical_encode

log = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
REPLAY_HEADER = "X-Idempotent-Replay"
ACTOR_HEADER = "X-Actor-Id"
KEY_PREFIX = "idemp:v1"
GATED_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

IN_FLIGHT = "in_flight"
DONE = "done"


class IdempotencyKeyReusedError(ConflictError):
    reason = "idempotency_key_reused"


class DuplicateRequestInProgressError(ConflictError):
    reason = "duplicate_request_in_progress"


class IdempotencyRecord(BaseModel):
    state: str
    request_hash: str
    status_code: Optional[int] = None
    body: Optional[str] = None
    media_type: Optional[str] = None
    created_at: str


def request_fingerprint(body: bytes) -> str:
    """SHA-256 of the canonical JSON body, so key order and whitespace don't matter."""
    if body:
        try:
            return hashlib.sha256(canonical_encode(json.loads(body)).encode("utf-8")).hexdigest()
        except ValueError:
            pass
    return hashlib.sha256(body or b"").hexdigest()


def principal_of(request: Request) -> str:
    actor = request.headers.get(ACTOR_HEADER)
    if actor:
        return actor
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


class IdempotencyGate:
    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        inflight_ttl: int = IDEMPOTENCY_INFLIGHT_TTL_SEC,
        replay_ttl: int = IDEMPOTENCY_REPLAY_TTL_SEC,
    ):
        self._redis = redis
        self.inflight_ttl = inflight_ttl
        self.replay_ttl = replay_ttl

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis if self._redis is not None else get_redis()

    @staticmethod
    def key_for(principal: str, method: str, path: str, token: str) -> str:
        return f"{KEY_PREFIX}:{principal}:{method.upper()}:{normalize_path(path)}:{token}"

    async def begin(self, key: str, request_hash: str) -> Optional[IdempotencyRecord]:
        """
        Returns None when this request now owns the key and should run the command,
        or the stored record when a completed result must be replayed.
        Raises a ConflictError for a reused key or a duplicate still in flight.
        """
        record = IdempotencyRecord(
            state=IN_FLIGHT,
            request_hash=request_hash,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        # Two attempts: the existing record may expire or be discarded between SET NX and GET.
        for _ in range(2):
            if await self.redis.set(key, record.model_dump_json(), nx=True, ex=self.inflight_ttl):
                return None

            raw = await self.redis.get(key)
            if raw is None:
                continue

            try:
                existing = IdempotencyRecord.model_validate_json(raw)
            except ValidationError:
                log.warning(f"Discarding unreadable idempotency record at {key}")
                await self.redis.delete(key)
                continue

            if existing.request_hash != request_hash:
                raise IdempotencyKeyReusedError(
                    "This Idempotency-Key was already used with a different request body"
                )
            if existing.state == IN_FLIGHT:
                raise DuplicateRequestInProgressError(
                    "A request with this Idempotency-Key is still being processed"
                )
            return existing

        raise DuplicateRequestInProgressError("A request with this Idempotency-Key is still being processed")

    async def complete(
        self,
        key: str,
        request_hash: str,
        status_code: int,
        body: str,
        media_type: Optional[str] = None,
    ) -> None:
        if not 200 <= status_code < 300:
            await self.redis.delete(key)
            return

        record = IdempotencyRecord(
            state=DONE,
            request_hash=request_hash,
            status_code=status_code,
            body=body,
            media_type=media_type,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        await self.redis.set(key, record.model_dump_json(), ex=self.replay_ttl)

    async def abandon(self, key: str) -> None:
        await self.redis.delete(key)


class IdempotencyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gate: Optional[IdempotencyGate] = None):
        super().__init__(app)
        self.gate = gate or IdempotencyGate()

    async def dispatch(self, request: Request, call_next):
        token = request.headers.get(IDEMPOTENCY_HEADER, "").strip()
        if request.method not in GATED_METHODS or not token:
            return await call_next(request)

        body = await request.body()
        request_hash = request_fingerprint(body)
        key = self.gate.key_for(principal_of(request), request.method, request.url.path, token)

        try:
            stored = await self.gate.begin(key, request_hash)
        except ConflictError as exc:
            log.info(f"Idempotency conflict on {request.method} {request.url.path}: {exc.reason}")
            return JSONResponse(status_code=exc.status_code, content=error_body(exc.reason, exc.message))
        except RedisError as exc:
            log.warning(f"idempotency degraded: store unavailable, {request.method} {request.url.path} not gated ({exc})")
            return await call_next(request)

        if stored is not None:
            log.info(f"Replaying stored result for {request.method} {request.url.path}")
            return Response(
                content=stored.body,
                status_code=stored.status_code,
                media_type=stored.media_type,
                headers={REPLAY_HEADER: "true"},
            )

        try:
            response = await call_next(request)
        except Exception:
            try:
                await self.gate.abandon(key)
            except RedisError as exc:
                log.warning(f"idempotency degraded: could not clear key after failure ({exc})")
            raise

        content = b"".join([chunk async for chunk in response.body_iterator])
        media_type = response.headers.get("content-type")
        try:
            await self.gate.complete(
                key, request_hash, response.status_code, content.decode("utf-8"), media_type
            )
        except RedisError as exc:
            log.warning(f"idempotency degraded: result of {request.method} {request.url.path} not stored ({exc})")

        return Response(
            content=content,
            status_code=response.status_code,
            headers=dict(response.headers),
        )
