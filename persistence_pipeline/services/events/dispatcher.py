"""
Event dispatchers.

The pipeline never interprets payloads; it hands each one to an object with
a dispatch(payload) method and propagates whatever that raises.

- InProcessEventDispatcher: calls handlers subscribed by payload type
- RedisEventDispatcher: publishes the JSON form of the payload to a channel
"""

from __future__ import annotations

import dataclasses
import json
import time
from collections import defaultdict
from typing import Any, Callable, Protocol

import redis

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Any]

WILDCARD = "*"


def _handler_key(payload_type: type | str) -> type:
    if payload_type == WILDCARD:
        return object
    if not isinstance(payload_type, type):
        raise TypeError(f"Subscribe to a payload type or '{WILDCARD}', got {payload_type!r}")
    return payload_type


class EventDispatcher(Protocol):
    """Delivers one event payload. Raises on failure."""

    def dispatch(self, payload: Any) -> Any:
        ...


class InProcessEventDispatcher:
    """
    Dispatch to handlers registered per payload type.

    Handlers subscribed to a base class receive every subclass payload;
    subscribe to ``"*"`` (or ``object``) to receive everything.

    Usage:
        dispatcher = InProcessEventDispatcher()
        dispatcher.subscribe(DomainEvent, audit_log.append)
        uow = UnitOfWork(session, registry, dispatcher=dispatcher)
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, payload_type: type | str, handler: EventHandler) -> None:
        self._handlers[_handler_key(payload_type)].append(handler)

    def unsubscribe(self, payload_type: type | str, handler: EventHandler) -> None:
        handlers = self._handlers.get(_handler_key(payload_type), [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers_for(self, payload: Any) -> list[EventHandler]:
        handlers: list[EventHandler] = []
        for klass in type(payload).__mro__:
            handlers.extend(self._handlers.get(klass, ()))
        return handlers

    def dispatch(self, payload: Any) -> int:
        """Call every matching handler in subscription order. Returns the handler count."""
        handlers = self.handlers_for(payload)
        for handler in handlers:
            handler(payload)
        if not handlers:
            logger.debug("Event has no subscribers", payload_type=type(payload).__name__)
        return len(handlers)


def serialize_payload(payload: Any) -> str:
    """JSON form of a payload: to_json(), dataclass fields, or the value itself."""
    to_json = getattr(payload, "to_json", None)
    if callable(to_json):
        return to_json()
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        data = dataclasses.asdict(payload)
        data.setdefault("type", type(payload).__name__)
        return json.dumps(data, default=str)
    return json.dumps(payload, default=str)


def _validate_event_size(message: str, payload_type: str, max_size: int) -> None:
    size = len(message.encode("utf-8"))
    if size > max_size:
        raise ValueError(f"Event {payload_type} exceeds max size: {size} > {max_size} bytes")


class RedisEventDispatcher:
    """
    Publish events to a Redis pub/sub channel.

    Publishing is retried with exponential backoff; after the last attempt
    the Redis error propagates and the pipeline reports a DispatchFailure.

    Args:
        client: Sync Redis client (defaults to the shared pool)
        channel: Channel name (defaults to settings.event_channel)
        max_retries: Publish attempts per event
        retry_delay: Base delay between attempts, in seconds
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        channel: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if client is None:
            from shared.infrastructure.redis_pool import get_redis_sync_client

            client = get_redis_sync_client()
        self._client = client
        self._channel = channel or settings.event_channel
        self._max_retries = max(1, max_retries if max_retries is not None else settings.redis_publish_max_retries)
        self._retry_delay = retry_delay if retry_delay is not None else settings.redis_publish_retry_delay
        self._sleep = sleep

    @property
    def channel(self) -> str:
        return self._channel

    def dispatch(self, payload: Any) -> int:
        """Publish one payload. Returns the number of subscribers that received it."""
        payload_type = type(payload).__name__
        message = serialize_payload(payload)
        _validate_event_size(message, payload_type, settings.max_event_size)

        last_error: redis.RedisError | None = None
        for attempt in range(self._max_retries):
            try:
                return self._client.publish(self._channel, message)
            except redis.RedisError as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        "Redis publish failed, retrying",
                        channel=self._channel,
                        payload_type=payload_type,
                        attempt=attempt + 1,
                        max_retries=self._max_retries,
                        delay_seconds=round(delay, 2),
                        error=str(e),
                    )
                    self._sleep(delay)

        logger.error(
            "Redis publish failed after all retries",
            channel=self._channel,
            payload_type=payload_type,
            error=str(last_error),
        )
        raise last_error  # type: ignore[misc]
