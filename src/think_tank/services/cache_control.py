"""Cache control surface: get, set, delete, clear and stats over the shared TTL cache."""

from __future__ import annotations

from typing import Any, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from think_tank.core.cache import TTLCache
from think_tank.core.errors import RequestValidationError
from think_tank.log import get_logger

logger = get_logger(__name__)

PERSONA_PREFIX = "persona:"
CONVERSATION_PREFIX = "conversation:"
CONVERSATION_SNAPSHOT_LIMIT = 50


class SnapshotStore(Protocol):
    async def get_persona(self, persona_id: str) -> Optional[dict[str, Any]]: ...

    async def get_conversation_messages(self, conversation_id: str, limit: int = 50) -> list[dict[str, Any]]: ...


class CacheRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["get", "set", "delete", "clear", "stats"]
    key: Optional[str] = None
    value: Any = None
    ttl: Optional[float] = Field(default=None, gt=0)  # seconds
    pattern: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")

    @model_validator(mode="after")
    def _check_action_fields(self) -> CacheRequest:
        if self.action == "get" and not self.key:
            raise ValueError("key is required for get")
        if self.action == "set" and (not self.key or self.value is None):
            raise ValueError("key and value are required for set")
        if self.action == "delete" and not (self.key or self.pattern):
            raise ValueError("key or pattern is required for delete")
        return self


def composite_key(user_id: Optional[str] = None, conversation_id: Optional[str] = None, key: Optional[str] = None) -> str:
    parts = []
    if user_id:
        parts.append(f"user:{user_id}")
    if conversation_id:
        parts.append(f"conv:{conversation_id}")
    if key:
        parts.append(key)
    return ":".join(parts)


class CacheControl:
    def __init__(self, cache: TTLCache, snapshots: SnapshotStore | None = None, sample_keys: int = 100):
        self._cache = cache
        self._snapshots = snapshots
        self._sample_keys = sample_keys

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run one cache action and return ``{"success": ..., "data"|"stats": ...}``."""
        try:
            request = CacheRequest.model_validate(payload)
        except ValidationError as e:
            raise RequestValidationError("Invalid cache request", e.errors(include_url=False)) from e

        match request.action:
            case "get":
                return await self._get(request)
            case "set":
                return self._set(request)
            case "delete":
                return self._delete(request)
            case "clear":
                return self._clear(request)
            case "stats":
                return {"success": True, "stats": self._cache.stats(self._sample_keys).to_dict()}

    async def _get(self, request: CacheRequest) -> dict[str, Any]:
        key = composite_key(request.user_id, request.conversation_id, request.key)
        value = self._cache.get(key)
        if value is not None:
            return {"success": True, "data": value}

        value = await self._fetch_through(request.key or "")
        if value is None:
            return {"success": False, "data": None}
        self._cache.set(key, value)
        logger.debug("cache_filled", key=key)
        return {"success": True, "data": value}

    async def _fetch_through(self, key: str) -> Any:
        if self._snapshots is None:
            return None
        if key.startswith(PERSONA_PREFIX):
            return await self._snapshots.get_persona(key[len(PERSONA_PREFIX):])
        if key.startswith(CONVERSATION_PREFIX):
            messages = await self._snapshots.get_conversation_messages(
                key[len(CONVERSATION_PREFIX):], limit=CONVERSATION_SNAPSHOT_LIMIT
            )
            return messages or None
        return None

    def _set(self, request: CacheRequest) -> dict[str, Any]:
        key = composite_key(request.user_id, request.conversation_id, request.key)
        ttl = self._cache.set(key, request.value, request.ttl)
        return {"success": True, "data": {"key": key, "ttl": ttl}}

    def _delete(self, request: CacheRequest) -> dict[str, Any]:
        if request.pattern:
            pattern = composite_key(request.user_id, request.conversation_id, request.pattern)
            return {"success": True, "data": {"deletedCount": self._cache.delete_matching(pattern)}}
        key = composite_key(request.user_id, request.conversation_id, request.key)
        deleted = self._cache.delete(key)
        return {"success": deleted, "data": {"deleted": deleted}}

    def _clear(self, request: CacheRequest) -> dict[str, Any]:
        if request.user_id or request.conversation_id:
            prefix = composite_key(request.user_id, request.conversation_id)
            count = self._cache.delete_prefix(prefix)
        else:
            count = self._cache.clear()
        logger.info("cache_cleared", count=count, user_id=request.user_id, conversation_id=request.conversation_id)
        return {"success": True, "data": {"clearedCount": count}}
