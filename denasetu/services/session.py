"""
Session context store.

Replaces the browser's ambient ``user`` / ``role`` key/value entries with an
explicit context kept in Redis under an opaque token.
"""
import json
import secrets
from datetime import timedelta
from typing import Optional

import redis
import structlog

from denasetu.core.config import get_settings
from denasetu.core.exceptions import NotAuthenticated, NotFound, StoreError
from denasetu.schemas.session import SessionContext, Role
from denasetu.store.data_store import DataStore, to_record

logger = structlog.get_logger(__name__)
settings = get_settings()

IDENTITY_RELATIONS = {
    Role.DONOR: "donors",
    Role.NGO: "ngos",
    Role.VOLUNTEER: "volunteers",
}


class SessionManager:
    """Redis-backed session contexts"""

    def __init__(self):
        self.redis_client: Optional[redis.Redis] = None

    def init_redis(self, redis_url: Optional[str] = None) -> redis.Redis:
        """Initialize Redis connection"""
        redis_url = redis_url or settings.redis_url
        self.redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True
        )
        logger.info("Redis connection configured from URL", redis_url=redis_url)

        try:
            self.redis_client.ping()
            logger.info("Redis connection established successfully")
            return self.redis_client
        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise ConnectionError(f"Failed to connect to Redis: {e}")

    def close(self):
        """Close Redis connection"""
        if self.redis_client:
            self.redis_client.close()
            logger.info("Redis connection closed")

    def _client(self) -> redis.Redis:
        if not self.redis_client:
            raise StoreError("Session store is not connected")
        return self.redis_client

    # session:<token> holds the context; session-user:<user_id> points back at the token
    def _session_key(self, token: str) -> str:
        return f"session:{token}"

    def _user_key(self, user_id: str) -> str:
        return f"session-user:{user_id}"

    def open_session(self, store: DataStore, user_id: str, role: Role,
                     ttl: Optional[timedelta] = None) -> SessionContext:
        """Initialise the session context on login"""
        role = Role(role)
        profile_row = store.get(IDENTITY_RELATIONS[role], user_id)
        if profile_row is None:
            raise NotFound(f"No {role.value} with id {user_id}")

        profile = json.loads(json.dumps(to_record(profile_row), default=str))
        context = SessionContext(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            role=role,
            profile=profile,
        )
        ttl_seconds = int((ttl or timedelta(seconds=settings.session_ttl_seconds)).total_seconds())

        client = self._client()
        try:
            pipe = client.pipeline()
            pipe.setex(self._session_key(context.token), ttl_seconds, context.model_dump_json())
            pipe.setex(self._user_key(user_id), ttl_seconds, context.token)
            pipe.execute()
        except redis.RedisError as e:
            logger.error("Failed to store session", user_id=user_id, error=str(e))
            raise StoreError(f"Failed to store session: {e}")

        logger.info("Session opened", user_id=user_id, role=role.value, ttl_seconds=ttl_seconds)
        return context

    def resolve(self, token: Optional[str]) -> SessionContext:
        """Context for a token, or NotAuthenticated"""
        if not token:
            raise NotAuthenticated("Missing session token")
        try:
            raw = self._client().get(self._session_key(token))
        except redis.RedisError as e:
            logger.error("Failed to read session", error=str(e))
            raise StoreError(f"Failed to read session: {e}")
        if not raw:
            raise NotAuthenticated("Session expired or unknown")
        return SessionContext.model_validate_json(raw)

    def close_session(self, token: str) -> bool:
        """Tear the session down on logout"""
        context = self.resolve(token)
        try:
            deleted = self._client().delete(self._session_key(token), self._user_key(context.user_id))
        except redis.RedisError as e:
            logger.error("Failed to delete session", user_id=context.user_id, error=str(e))
            raise StoreError(f"Failed to delete session: {e}")
        logger.info("Session closed", user_id=context.user_id, role=context.role.value)
        return bool(deleted)


# Global session manager instance
session_manager = SessionManager()


def get_session_manager() -> SessionManager:
    """Dependency to get the session manager"""
    return session_manager
