"""
Live subscriptions for the persistence gateways.

ChangeFeed keeps the callbacks registered through ``gateway.subscribe``.
Gateways publish every committed write to it; subscribers receive the
current state, never the write payload, so late or reordered deliveries
cannot show a stale record.

RedisChangeRelay carries change events between processes: a write in one
API worker reaches subscribers held by another worker, which re-reads the
record from the store before delivering it.
"""
import os
import json
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union
from uuid import uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
CHANGE_FEED_CHANNEL = os.getenv('CHANGE_FEED_CHANNEL', 'peer-connect:changes')

Callback = Callable[[Any], Union[None, Awaitable[None]]]


async def deliver(callback: Callback, payload: Any) -> None:
    """Invoke a sync or async subscriber; subscriber errors never reach the writer."""
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Subscriber {getattr(callback, '__name__', callback)!r} failed: {e}", exc_info=True)


class ChangeFeed:
    """Registry of record and membership subscriptions."""

    def __init__(self, relay: Optional["RedisChangeRelay"] = None):
        self.relay = relay
        self._record_watchers: Dict[Tuple[str, str], List[Callback]] = defaultdict(list)
        self._membership_watchers: Dict[Tuple[str, str, str], List[Callback]] = defaultdict(list)

    def watch_record(self, kind: str, record_id: str, callback: Callback) -> Callable[[], None]:
        key = (kind, record_id)
        self._record_watchers[key].append(callback)
        return self._remover(self._record_watchers, key, callback)

    def watch_membership(self, kind: str, field: str, user_id: str, callback: Callback) -> Callable[[], None]:
        key = (kind, field, user_id)
        self._membership_watchers[key].append(callback)
        return self._remover(self._membership_watchers, key, callback)

    def record_watchers(self, kind: str, record_id: str) -> List[Callback]:
        return list(self._record_watchers.get((kind, record_id), ()))

    def membership_watchers(self, kind: str, user_ids: Iterable[str]) -> List[Tuple[str, str, List[Callback]]]:
        """Membership subscriptions of ``kind`` affected by a change touching ``user_ids``."""
        user_ids = set(user_ids)
        return [
            (field, user_id, list(callbacks))
            for (watched_kind, field, user_id), callbacks in self._membership_watchers.items()
            if watched_kind == kind and user_id in user_ids and callbacks
        ]

    @property
    def subscription_count(self) -> int:
        return (sum(len(v) for v in self._record_watchers.values())
                + sum(len(v) for v in self._membership_watchers.values()))

    @staticmethod
    def _remover(registry: Dict, key: Tuple, callback: Callback) -> Callable[[], None]:
        def unsubscribe() -> None:
            callbacks = registry.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del registry[key]
        return unsubscribe


class RedisChangeRelay:
    """Fan change events out to other processes over Redis pub/sub."""

    def __init__(self, url: str = REDIS_URL, channel: str = CHANGE_FEED_CHANNEL, client=None):
        self.channel = channel
        self.origin = uuid4().hex
        self._client = client or aioredis.from_url(url, decode_responses=True)

    async def publish(self, kind: str, record_id: str, members: Iterable[str]) -> None:
        """Announce a committed change; failures only cost remote subscribers a refresh."""
        event = {
            "origin": self.origin,
            "kind": kind,
            "id": record_id,
            "members": sorted(members),
        }
        try:
            await self._client.publish(self.channel, json.dumps(event))
        except RedisError as e:
            logger.warning(f"Change relay publish failed for {kind}/{record_id}: {e}")

    async def run(self, gateway) -> None:
        """Consume events from other processes and dispatch them to local subscribers."""
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info(f"Change relay listening on {self.channel}")
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = json.loads(message["data"])
                except (TypeError, ValueError) as e:
                    logger.warning(f"Ignoring malformed change event: {e}")
                    continue
                if event.get("origin") == self.origin:
                    continue
                try:
                    await gateway.dispatch_change(event["kind"], event["id"], set(event.get("members", [])))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Ignoring change event {event!r}: {e}")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def close(self) -> None:
        await self._client.aclose()
