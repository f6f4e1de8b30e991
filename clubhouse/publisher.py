import logging
import os
from typing import Callable

import redis

from matchday.events import Event

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Fans committed events out over Redis pub/sub.

    Channels are `match:<id>:events` and `tournament:<id>:events`.
    Observers outside this process subscribe there; publishing is
    advisory and a Redis outage is logged, not raised.
    """

    def __init__(self, redis_url: str = None, redis_client: redis.Redis = None):
        if redis_client is not None:
            self.redis = redis_client
        else:
            self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
            self.redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
        self._pubsub = None

    def publish(self, event: Event) -> bool:
        try:
            self.redis.publish(event.channel, event.to_json())
            return True
        except redis.exceptions.RedisError as e:
            logger.warning(f"Could not publish {event.type.value} on {event.channel}: {e}")
            return False

    def subscribe_match(self, match_id: str, handler: Callable[[Event], None]):
        self._subscribe(f"match:{match_id}:events", handler)

    def subscribe_tournament(self, tournament_id: str, handler: Callable[[Event], None]):
        self._subscribe(f"tournament:{tournament_id}:events", handler)

    def _subscribe(self, channel: str, handler: Callable[[Event], None]):
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)

        def on_message(message):
            try:
                event = Event.from_json(message['data'])
            except (ValueError, KeyError) as e:
                logger.error(f"Dropping malformed message on {channel}: {e}")
                return
            handler(event)

        self._pubsub.subscribe(**{channel: on_message})

    def start_listening(self, sleep_time: float = 0.1):
        if self._pubsub is None:
            return None
        return self._pubsub.run_in_thread(sleep_time=sleep_time, daemon=True)

    def stop_listening(self):
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


class NullPublisher:
    """Used when Redis is disabled (tests, offline development)."""

    def publish(self, event: Event) -> bool:
        logger.debug(f"Publishing disabled; dropped {event.type.value} for {event.aggregate_id}")
        return False
