"""
Change bus: observers receive committed (before, after) document pairs.

A handler is registered per collection and decides for itself which field
transitions it cares about. Publishing happens after the writer's
transaction commits, so observers only ever see durable state. Delivery is
at-least-once from the observer's point of view: handlers must be
idempotent.
"""
from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class DocumentChange:
    collection: str
    key: Any
    before: dict[str, Any] | None
    after: dict[str, Any] | None

    def value(self, field: str, *, before: bool = False) -> Any:
        doc = self.before if before else self.after
        return (doc or {}).get(field)

    def changed(self, field: str) -> bool:
        return self.value(field, before=True) != self.value(field)

    def became(self, field: str, value: Any) -> bool:
        """True when `field` transitioned into `value` in this change."""
        return self.value(field) == value and self.value(field, before=True) != value


Handler = Callable[..., Awaitable[None]]


class ChangeBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, collection: str) -> Callable[[Handler], Handler]:
        def decorator(fn: Handler) -> Handler:
            if fn not in self._handlers[collection]:
                self._handlers[collection].append(fn)
            return fn
        return decorator

    def handlers(self, collection: str) -> list[Handler]:
        return list(self._handlers.get(collection, ()))

    async def publish(self, change: DocumentChange, **context: Any) -> None:
        for handler in self.handlers(change.collection):
            try:
                await handler(change, **context)
            except Exception:
                # The writer already committed; a failing observer must not undo it.
                log.exception("observer_failed", collection=change.collection, key=str(change.key), handler=handler.__name__)


bus = ChangeBus()
