from __future__ import annotations

import logging

from analysis.events import EventBus, PhaseChanged, RepCompleted
from analysis.phases import ExercisePhase, Phase


def _phase_event(ts: float = 0.0) -> PhaseChanged:
    return PhaseChanged(
        exercise="squat",
        previous="ready",
        phase=ExercisePhase(phase=Phase.ECCENTRIC, confidence=0.8),
        timestamp_ms=ts,
    )


def test_handlers_receive_only_their_type_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(PhaseChanged, lambda e: calls.append(("a", e.timestamp_ms)))
    bus.subscribe(PhaseChanged, lambda e: calls.append(("b", e.timestamp_ms)))
    bus.subscribe(RepCompleted, lambda e: calls.append(("rep", None)))

    bus.publish(_phase_event(100.0))
    assert calls == [("a", 100.0), ("b", 100.0)]
    assert bus.handler_count(PhaseChanged) == 2
    assert bus.handler_count(RepCompleted) == 1


def test_unsubscribe():
    bus = EventBus()
    calls = []
    unsubscribe = bus.subscribe(PhaseChanged, calls.append)
    bus.publish(_phase_event())
    unsubscribe()
    unsubscribe()  # second call is a no-op
    bus.publish(_phase_event())
    assert len(calls) == 1
    assert bus.handler_count(PhaseChanged) == 0


def test_failing_handler_is_logged_and_others_run(caplog):
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(PhaseChanged, broken)
    bus.subscribe(PhaseChanged, calls.append)

    with caplog.at_level(logging.ERROR, logger="analysis.events"):
        bus.publish(_phase_event())

    assert len(calls) == 1
    assert any("failed" in record.getMessage() for record in caplog.records)


def test_publish_without_subscribers_is_noop():
    EventBus().publish(_phase_event())
