"""
Live event publisher.

Publishes best-effort real-time events on named channels
(``user:<id>``, ``tenant:<id>``, ``audit:<id>``, ``meeting:<id>``). The socket
gateway that relays them to browsers subscribes separately and is not part of
this service.

Backends:
  - redis:  PUBLISH on ``<prefix><channel>`` with a JSON envelope (production).
  - memory: in-process history + subscriber callbacks (development/testing).

The backend is chosen from ``LIVE_EVENTS_BACKEND`` when the app starts.

Usage:
    from auditflow.services.live_events import publish
    publish("audit:12", "teamAppointmentResponded", {"userId": 4})
"""

import json
import logging
from collections import defaultdict, deque
from datetime import datetime, timezone

import redis
from flask import current_app

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "auditflow:"
_MAX_HISTORY = 1000


def _envelope(channel: str, event_name: str, payload: dict) -> dict:
    return {
        "channel": channel,
        "event": event_name,
        "payload": payload,
        "published_at": datetime.now(timezone.utc).isoformat(),
    }


class MemoryBackend:
    """In-process fan-out for dev/testing."""

    name = "memory"

    def __init__(self, max_history: int = _MAX_HISTORY):
        self.history: deque = deque(maxlen=max_history)
        self._subscribers: dict[str, list] = defaultdict(list)

    def publish(self, channel: str, event_name: str, payload: dict) -> int:
        envelope = _envelope(channel, event_name, payload)
        self.history.append(envelope)
        delivered = 0
        for callback in list(self._subscribers.get(channel, ())):
            callback(envelope)
            delivered += 1
        return delivered

    def ping(self) -> bool:
        return True

    def subscribe(self, channel: str, callback) -> None:
        self._subscribers[channel].append(callback)

    def unsubscribe(self, channel: str, callback) -> None:
        subscribers = self._subscribers.get(channel, [])
        if callback in subscribers:
            subscribers.remove(callback)

    def events(self, channel: str | None = None, event_name: str | None = None) -> list[dict]:
        """Recorded envelopes, optionally filtered."""
        return [
            e for e in self.history
            if (channel is None or e["channel"] == channel)
            and (event_name is None or e["event"] == event_name)
        ]

    def clear(self) -> None:
        self.history.clear()
        self._subscribers.clear()


class RedisBackend:
    """Redis PUBLISH fan-out."""

    name = "redis"

    def __init__(self, url: str, prefix: str = CHANNEL_PREFIX):
        self.client = redis.from_url(url, decode_responses=True)
        self.prefix = prefix

    def publish(self, channel: str, event_name: str, payload: dict) -> int:
        envelope = _envelope(channel, event_name, payload)
        return self.client.publish(f"{self.prefix}{channel}", json.dumps(envelope, default=str))

    def ping(self) -> bool:
        return bool(self.client.ping())


def init_live_events(app) -> None:
    """Attach the configured backend to ``app.extensions``."""
    backend_name = (app.config.get("LIVE_EVENTS_BACKEND") or "memory").lower()
    redis_url = app.config.get("REDIS_URL") or ""

    if backend_name == "redis":
        if not redis_url or redis_url.startswith("memory://"):
            raise RuntimeError("LIVE_EVENTS_BACKEND=redis requires a redis:// REDIS_URL")
        backend = RedisBackend(redis_url)
        app.logger.info("Live events: using Redis at %s", redis_url.split("@")[-1])
    elif backend_name == "memory":
        backend = MemoryBackend()
    else:
        raise RuntimeError(f"Unknown LIVE_EVENTS_BACKEND {backend_name!r}")

    app.extensions["live_events"] = backend


def get_backend():
    return current_app.extensions["live_events"]


def publish(channel: str, event_name: str, payload: dict | None = None) -> int:
    """Publish one event. Returns the number of receivers the backend reports."""
    delivered = get_backend().publish(channel, event_name, payload or {})
    logger.debug(
        "Live event published",
        extra={"channel": channel, "event_name": event_name},
    )
    return delivered
