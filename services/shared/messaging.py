"""Domain event publisher backed by Redis Streams."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publish booking domain events to a Redis Stream.

    Publishing is best effort: a broken Redis connection is logged and never
    propagated to the caller, so a status change is never undone because a
    downstream consumer could not be told about it.
    """

    def __init__(self, redis_url: str, stream_name: str, *, maxlen: Optional[int] = 1000) -> None:
        self._stream_name = stream_name
        self._maxlen = maxlen
        self._client = redis.Redis.from_url(redis_url)

    @property
    def stream_name(self) -> str:
        return self._stream_name

    def publish(
        self,
        event_type: str,
        payload: Dict[str, Any],
        *,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append an event to the stream.

        Parameters
        ----------
        event_type:
            Canonical name, e.g. ``booking.status_changed``.
        payload:
            Serialisable body (JSON dumped, unknown types via ``str``).
        metadata:
            Optional envelope metadata (actor, correlation id).

        Returns ``True`` when the event was written.
        """

        event = {
            "event_type": event_type,
            "payload": json.dumps(payload, default=str),
        }
        if metadata:
            event["metadata"] = json.dumps(metadata, default=str)

        try:
            self._client.xadd(
                self._stream_name,
                event,
                maxlen=self._maxlen,
                approximate=bool(self._maxlen),
            )
        except redis.RedisError:
            logger.exception("Failed to publish event '%s' to stream '%s'", event_type, self._stream_name)
            return False
        return True

    def close(self) -> None:
        self._client.close()
