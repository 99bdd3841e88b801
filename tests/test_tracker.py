"""Tests for the loss tracking state machine."""

import random
import threading

import pytest

from tracker import LossTracker, TransitionKind


class TestPollTick:
    """Poll ticks open loss windows once the threshold is exceeded."""

    def test_ticks_within_threshold_never_enter_loss(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        for t in (0.0, 1.0, 2.0, 3.0):
            assert tracker.on_poll_tick(t) is None
        assert tracker.in_loss is False
        assert recording_sink.events == []

    def test_threshold_is_exclusive(self):
        tracker = LossTracker(threshold=3.0, now=10.0)
        assert tracker.on_poll_tick(13.0) is None
        assert tracker.on_poll_tick(13.001) is not None

    def test_first_tick_over_threshold_emits_entered_loss(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        event = tracker.on_poll_tick(4.0)

        assert event.kind is TransitionKind.ENTERED_LOSS
        assert event.timestamp == 4.0
        assert event.packets_lost is None
        assert recording_sink.events == [event]

        state = tracker.snapshot()
        assert state.in_loss is True
        assert state.loss_start_time == 4.0
        assert state.ticks_in_loss == 1

    def test_one_entered_event_per_loss_run(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        for t in (4.0, 6.0, 8.0, 10.0):
            tracker.on_poll_tick(t)

        kinds = [e.kind for e in recording_sink.events]
        assert kinds == [TransitionKind.ENTERED_LOSS]
        assert tracker.snapshot().ticks_in_loss == 4
        assert tracker.snapshot().loss_start_time == 4.0

    def test_tick_within_threshold_does_not_recover_silently(self, recording_sink):
        """Only a received packet closes a loss window."""
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        tracker.on_poll_tick(4.0)

        assert tracker.on_poll_tick(2.0) is None

        state = tracker.snapshot()
        assert state.in_loss is True
        assert state.ticks_in_loss == 1
        assert len(recording_sink.events) == 1


class TestPacketReceived:
    """Received packets refresh liveness and close loss windows."""

    def test_receive_while_up_emits_nothing(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        before = tracker.snapshot()

        assert tracker.on_packet_received(1.5) is None

        after = tracker.snapshot()
        assert recording_sink.events == []
        assert after.time_last_success == 1.5
        assert (after.in_loss, after.loss_start_time, after.ticks_in_loss) == (
            before.in_loss, before.loss_start_time, before.ticks_in_loss)

    def test_receive_during_loss_emits_recovered(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        tracker.on_poll_tick(4.0)
        tracker.on_poll_tick(6.0)

        event = tracker.on_packet_received(7.0)

        assert event.kind is TransitionKind.RECOVERED
        assert event.timestamp == 7.0
        assert event.packets_lost == 2
        assert event.started_at == 4.0
        state = tracker.snapshot()
        assert state.in_loss is False
        assert state.ticks_in_loss == 0
        assert state.time_last_success == 7.0

    def test_counter_resets_between_windows(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        tracker.on_poll_tick(4.0)
        tracker.on_poll_tick(6.0)
        tracker.on_poll_tick(8.0)
        tracker.on_packet_received(9.0)

        tracker.on_poll_tick(13.0)
        second = tracker.on_packet_received(14.0)

        assert second.packets_lost == 1
        kinds = [e.kind for e in recording_sink.events]
        assert kinds == [
            TransitionKind.ENTERED_LOSS,
            TransitionKind.RECOVERED,
            TransitionKind.ENTERED_LOSS,
            TransitionKind.RECOVERED,
        ]

    def test_works_without_sink(self):
        tracker = LossTracker(threshold=3.0, now=0.0)
        assert tracker.on_poll_tick(5.0).kind is TransitionKind.ENTERED_LOSS
        assert tracker.on_packet_received(6.0).kind is TransitionKind.RECOVERED


class TestReferenceScenario:
    def test_two_second_poll_three_second_threshold(self, recording_sink):
        """Ticks at 0,2,4,6 then a reply at 7: loss opens at 4, closes with 2 ticks."""
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)

        assert tracker.on_poll_tick(0.0) is None
        assert tracker.on_poll_tick(2.0) is None
        entered = tracker.on_poll_tick(4.0)
        assert entered.kind is TransitionKind.ENTERED_LOSS
        assert entered.timestamp == 4.0
        assert tracker.on_poll_tick(6.0) is None
        assert tracker.snapshot().ticks_in_loss == 2

        recovered = tracker.on_packet_received(7.0)
        assert recovered.kind is TransitionKind.RECOVERED
        assert recovered.packets_lost == 2
        assert recording_sink.events == [entered, recovered]


@pytest.mark.parametrize("ticks", [1, 2, 5, 17])
def test_packets_lost_equals_ticks_in_run(ticks):
    tracker = LossTracker(threshold=3.0, now=0.0)
    for i in range(ticks):
        tracker.on_poll_tick(10.0 + 2 * i)
    event = tracker.on_packet_received(100.0)
    assert event.packets_lost == ticks


class TestConcurrency:
    """Receive and tick handlers racing from several threads."""

    def test_transitions_strictly_alternate_under_contention(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=0.5, now=0.0)
        clock_lock = threading.Lock()
        clock = [0.0]
        start = threading.Barrier(8)

        def worker(seed):
            rng = random.Random(seed)
            start.wait()
            for _ in range(2000):
                with clock_lock:
                    clock[0] += rng.uniform(0.0, 0.4)
                    now = clock[0]
                if rng.random() < 0.3:
                    tracker.on_packet_received(now)
                else:
                    tracker.on_poll_tick(now)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        kinds = [e.kind for e in recording_sink.events]
        assert kinds, "expected at least one loss window"
        for i, kind in enumerate(kinds):
            expected = TransitionKind.ENTERED_LOSS if i % 2 == 0 else TransitionKind.RECOVERED
            assert kind is expected, f"event {i} out of order: {kinds[max(0, i - 3):i + 1]}"

        state = tracker.snapshot()
        assert state.in_loss == (kinds[-1] is TransitionKind.ENTERED_LOSS)

    def test_simultaneous_boundary_emits_once(self, recording_sink):
        tracker = LossTracker(sink=recording_sink, threshold=3.0, now=0.0)
        start = threading.Barrier(16)

        def tick():
            start.wait()
            tracker.on_poll_tick(10.0)

        threads = [threading.Thread(target=tick) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert [e.kind for e in recording_sink.events] == [TransitionKind.ENTERED_LOSS]
        assert tracker.snapshot().ticks_in_loss == 16
