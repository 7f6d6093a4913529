from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Type, TypeVar, Union

from .form import FormIssue
from .phases import ExercisePhase, RepData
from .risk import InjuryRisk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepCompleted:
    exercise: str
    rep: RepData


@dataclass(frozen=True)
class PhaseChanged:
    exercise: str
    previous: str
    phase: ExercisePhase
    timestamp_ms: float


@dataclass(frozen=True)
class FormIssueRaised:
    exercise: str
    issue: FormIssue
    timestamp_ms: float


@dataclass(frozen=True)
class RiskDetected:
    exercise: str
    risk: InjuryRisk
    timestamp_ms: float


@dataclass(frozen=True)
class EmergencyStop:
    exercise: str
    risk: InjuryRisk
    timestamp_ms: float


Event = Union[RepCompleted, PhaseChanged, FormIssueRaised, RiskDetected, EmergencyStop]
E = TypeVar("E")
Handler = Callable[[Any], None]


class EventBus:
    """
    Synchronous typed publish/subscribe.

    Handlers run on the publishing thread, in subscription order. A handler that raises
    is logged and skipped; the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception("handler %r failed for %s", handler, type(event).__name__)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, ()))
