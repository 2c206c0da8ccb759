import logging
from collections import defaultdict
from urllib.parse import parse_qs
from uuid import UUID

import socketio

from bloodfinder.config import get_settings

logger = logging.getLogger(__name__)
_settings = get_settings()

# Use Redis manager so Celery workers can emit events via the same bus
_redis_mgr = socketio.AsyncRedisManager(_settings.REDIS_URL)
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*",
    client_manager=_redis_mgr,
)


class SubscriptionRegistry:
    """Which socket sessions listen on which topics.

    Populated when an authenticated socket connects and pruned when it
    disconnects, so a topic with no listeners disappears entirely.
    """

    def __init__(self):
        self._by_topic: dict[str, set[str]] = defaultdict(set)
        self._by_sid: dict[str, set[str]] = defaultdict(set)
        self._users: dict[str, str] = {}

    def subscribe(self, sid: str, topics, user_id: str | None = None) -> None:
        for topic in topics:
            self._by_topic[topic].add(sid)
            self._by_sid[sid].add(topic)
        if user_id is not None:
            self._users[sid] = user_id

    def remove(self, sid: str) -> set[str]:
        """Drop a session from every topic; returns the topics it was on."""
        topics = self._by_sid.pop(sid, set())
        for topic in topics:
            self._discard(sid, topic)
        self._users.pop(sid, None)
        return topics

    def _discard(self, sid: str, topic: str) -> None:
        members = self._by_topic.get(topic)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._by_topic[topic]

    def subscribers(self, topic: str) -> set[str]:
        return set(self._by_topic.get(topic, ()))

    def topics_for(self, sid: str) -> set[str]:
        return set(self._by_sid.get(sid, ()))

    def user_for(self, sid: str) -> str | None:
        return self._users.get(sid)

    def topics(self) -> list[str]:
        return sorted(self._by_topic)


registry = SubscriptionRegistry()


def _token_from(environ, auth) -> str | None:
    if isinstance(auth, dict) and auth.get("token"):
        return auth["token"]
    query = parse_qs(environ.get("QUERY_STRING", ""))
    values = query.get("token")
    return values[0] if values else None


@sio.event
async def connect(sid, environ, auth=None):
    """Authenticate the socket and join the topics that belong to its user."""
    from fastapi import HTTPException

    from bloodfinder.api.middleware.auth import decode_token
    from bloodfinder.db.postgres import async_session
    from bloodfinder.models.user import User
    from bloodfinder.services.notification_service import topics_for_user

    token = _token_from(environ, auth)
    if not token:
        logger.info("Rejecting unauthenticated socket %s", sid)
        return False
    try:
        token_data = decode_token(token)
    except HTTPException:
        logger.info("Rejecting socket %s with invalid token", sid)
        return False

    async with async_session() as session:
        user = await session.get(User, UUID(token_data.user_id))
    if user is None:
        return False

    topics = topics_for_user(user)
    for topic in topics:
        await sio.enter_room(sid, topic)
    registry.subscribe(sid, topics, user_id=str(user.id))
    logger.info("Socket.IO client %s connected as %s (%d topics)", sid, user.id, len(topics))


@sio.event
async def disconnect(sid, *args):
    topics = registry.remove(sid)
    logger.info("Socket.IO client disconnected: %s (left %d topics)", sid, len(topics))


@sio.event
async def update_availability(sid, data):
    """Donor toggles availability from the live client."""
    from bloodfinder.db.postgres import async_session
    from bloodfinder.models.user import User
    from bloodfinder.services import user_service

    user_id = registry.user_for(sid)
    if user_id is None or not isinstance(data, dict):
        return
    async with async_session() as session:
        user = await session.get(User, UUID(user_id))
        if user is None:
            return
        result = await user_service.set_availability(session, user, bool(data.get("is_available")))
        await session.commit()
    await sio.emit("availability_updated", result, to=sid)


# --- Emit functions (called from services) ---

async def emit_to_topic(topic: str, event: str, payload: dict):
    await sio.emit(event, payload, room=topic)
