"""Publish/subscribe channel for checkpoint, lap and training events.

The bus is constructed by the training runner and handed to the components
that publish or consume events. Nothing in the core depends on a particular
subscriber being present.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[Any], None]


@dataclass(frozen=True)
class CheckpointPassed:
    agent_id: int
    index: int
    time: float = 0.0


@dataclass(frozen=True)
class LapStarted:
    agent_id: int
    lap_number: int
    time: float = 0.0


@dataclass(frozen=True)
class LapCompleted:
    agent_id: int
    lap_number: int
    lap_time: float
    avg_speed: float
    distance: float = 0.0


@dataclass(frozen=True)
class WrongCheckpoint:
    agent_id: int
    index: int
    expected: int


@dataclass(frozen=True)
class AgentRespawned:
    agent_id: int
    checkpoint: int
    reason: str


@dataclass(frozen=True)
class EpisodeEnded:
    agent_id: int
    reason: str
    fitness: float
    episode: int
    generation: int


@dataclass(frozen=True)
class GenerationEvolved:
    generation: int
    summary: Dict[str, Any] = field(default_factory=dict)


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`; call ``unsubscribe`` to detach."""

    __slots__ = ("_bus", "event_type", "handler", "owner", "active")

    def __init__(self, bus: "EventBus", event_type: type, handler: Handler, owner: Optional[Hashable]) -> None:
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self.owner = owner
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscriptions: Dict[type, List[Subscription]] = defaultdict(list)

    def subscribe(
        self,
        event_type: Type[E],
        handler: Callable[[E], None],
        *,
        owner: Optional[Hashable] = None,
    ) -> Subscription:
        """Register ``handler`` for ``event_type``.

        ``owner`` groups subscriptions (typically an agent id) so they can be
        dropped together with :meth:`unsubscribe_owner` when the owner goes away.
        """

        subscription = Subscription(self, event_type, handler, owner)
        with self._lock:
            self._subscriptions[event_type].append(subscription)
        return subscription

    def unsubscribe_owner(self, owner: Hashable) -> int:
        removed = 0
        with self._lock:
            for event_type in list(self._subscriptions):
                keep = []
                for subscription in self._subscriptions[event_type]:
                    if subscription.owner == owner:
                        subscription.active = False
                        removed += 1
                    else:
                        keep.append(subscription)
                self._subscriptions[event_type] = keep
        return removed

    def publish(self, event: Any) -> None:
        with self._lock:
            targets = list(self._subscriptions.get(type(event), ()))
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.handler(event)
            except Exception:  # subscribers must never break the simulation
                logger.exception("Event handler for %s failed", type(event).__name__)

    def subscriber_count(self, event_type: Optional[type] = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._subscriptions.get(event_type, ()))
            return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        with self._lock:
            for subs in self._subscriptions.values():
                for subscription in subs:
                    subscription.active = False
            self._subscriptions.clear()

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.event_type)
            if subs and subscription in subs:
                subs.remove(subscription)
            subscription.active = False


__all__ = [
    "AgentRespawned",
    "CheckpointPassed",
    "EpisodeEnded",
    "EventBus",
    "GenerationEvolved",
    "LapCompleted",
    "LapStarted",
    "Subscription",
    "WrongCheckpoint",
]
