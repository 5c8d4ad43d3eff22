"""Tests for the event bus."""
from racega.events import CheckpointPassed, EventBus, LapCompleted, LapStarted


class TestEventBus:
    """Subscription lifecycle and delivery."""

    def test_publish_reaches_subscribers_of_that_type(self, bus):
        passed, laps = [], []
        bus.subscribe(CheckpointPassed, passed.append)
        bus.subscribe(LapCompleted, laps.append)

        bus.publish(CheckpointPassed(agent_id=1, index=3, time=0.5))

        assert passed == [CheckpointPassed(1, 3, 0.5)]
        assert laps == []

    def test_publish_without_subscribers_is_a_no_op(self, bus):
        bus.publish(LapStarted(agent_id=1, lap_number=1))

    def test_unsubscribe(self, bus):
        seen = []
        subscription = bus.subscribe(CheckpointPassed, seen.append)
        subscription.unsubscribe()
        subscription.unsubscribe()

        bus.publish(CheckpointPassed(1, 0))

        assert seen == []
        assert not subscription.active
        assert bus.subscriber_count(CheckpointPassed) == 0

    def test_unsubscribe_owner_drops_every_subscription_of_an_agent(self, bus):
        seen = []
        bus.subscribe(CheckpointPassed, seen.append, owner=7)
        bus.subscribe(LapCompleted, seen.append, owner=7)
        bus.subscribe(CheckpointPassed, seen.append, owner=8)

        assert bus.unsubscribe_owner(7) == 2
        bus.publish(CheckpointPassed(7, 0))

        assert len(seen) == 1
        assert bus.subscriber_count() == 1

    def test_failing_handler_does_not_break_delivery(self, bus):
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(CheckpointPassed, broken)
        bus.subscribe(CheckpointPassed, seen.append)

        bus.publish(CheckpointPassed(1, 2))

        assert seen == [CheckpointPassed(1, 2)]

    def test_handler_may_unsubscribe_during_publish(self, bus):
        seen = []
        holder = {}

        def once(event):
            seen.append(event)
            holder["sub"].unsubscribe()

        holder["sub"] = bus.subscribe(CheckpointPassed, once)
        bus.publish(CheckpointPassed(1, 0))
        bus.publish(CheckpointPassed(1, 1))

        assert len(seen) == 1

    def test_clear(self):
        bus = EventBus()
        seen = []
        bus.subscribe(CheckpointPassed, seen.append)
        bus.clear()
        bus.publish(CheckpointPassed(1, 0))
        assert seen == []
        assert bus.subscriber_count() == 0
