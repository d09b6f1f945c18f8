import time
from typing import Any, Callable, Dict, List, Optional

from persona_chat.client.api_client import ApiClient
from persona_chat.config.settings import settings
from persona_chat.domain.exceptions import BusinessError
from persona_chat.infrastructure.logging.logger import get_logger


log = get_logger("client.personas")


class PersonaDirectory:
    """人设列表缓存，自带时间戳与 TTL，由调用方持有并传递。"""

    def __init__(
        self,
        client: ApiClient,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._ttl = settings.persona_cache_ttl if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Optional[List[Dict[str, Any]]] = None
        self._fetched_at = 0.0

    def is_fresh(self) -> bool:
        return self._cache is not None and self._clock() - self._fetched_at < self._ttl

    def clear(self) -> None:
        self._cache = None
        self._fetched_at = 0.0

    def list(self, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """返回人设列表；请求失败时退回旧缓存，没有缓存才抛出。"""

        if not force_refresh and self.is_fresh():
            return list(self._cache or [])
        try:
            personas = self._client.list_personas()
        except BusinessError as e:
            log.warning("Error fetching personas", extra={"extra": {"code": e.code, "cached": self._cache is not None}})
            if self._cache is not None:
                return list(self._cache)
            raise
        self._cache = list(personas or [])
        self._fetched_at = self._clock()
        return list(self._cache)

    def get(self, persona_id: str) -> Optional[Dict[str, Any]]:
        if self.is_fresh():
            for persona in self._cache or []:
                if persona.get("id") == persona_id:
                    return persona
        try:
            return self._client.get_persona(persona_id)
        except BusinessError as e:
            log.warning("Error getting persona", extra={"extra": {"persona_id": persona_id, "code": e.code}})
            return None

    def is_valid(self, persona_id: str) -> bool:
        try:
            return any(p.get("id") == persona_id for p in self.list())
        except BusinessError:
            return False
