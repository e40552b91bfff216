"""Behavior-driven tests for the vehicle animation."""

from collections.abc import Callable

import pytest

from busmap.geo import haversine_m
from busmap.map.animation import AnimationEngine, AnimationLoop, Phase, VehicleFrame, sample_cycle

ROUTE = [(21.0, 105.8), (21.01, 105.8), (21.01, 105.81)]


class FakeHandle:
    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records call_later requests so tests can fire frames by hand."""

    def __init__(self):
        self.handles: list[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def fire(self) -> None:
        handle = self.pending[-1]
        handle.cancelled = True
        handle.callback()


class FakeClock:
    def __init__(self):
        self.seconds = 0.0

    def __call__(self) -> float:
        return self.seconds


class TestAnimationEngine:
    """Test the travel/pause state machine."""

    def test_rejects_non_positive_speed(self):
        """Should refuse a speed that can never reach the next stop."""
        with pytest.raises(ValueError, match="speed"):
            AnimationEngine(ROUTE, speed=0)

    def test_segment_duration_is_distance_over_speed(self):
        """Should spend haversine / speed seconds on a segment."""
        engine = AnimationEngine(ROUTE, speed=150)

        assert engine.segment_duration_ms(0) == pytest.approx(haversine_m(ROUTE[0], ROUTE[1]) / 150 * 1000)

    def test_starts_at_first_point(self):
        """Should start travelling from the first point."""
        engine = AnimationEngine(ROUTE)

        frame = engine.tick(1000.0)

        assert frame is not None
        assert frame.position == ROUTE[0]
        assert frame.phase is Phase.TRAVELING
        assert frame.segment_index == 0

    def test_halfway_is_midpoint(self):
        """Should be exactly halfway at half the duration with symmetric easing."""
        engine = AnimationEngine(ROUTE)
        duration = engine.segment_duration_ms(0)
        engine.tick(0.0)

        frame = engine.tick(duration / 2)

        assert frame is not None
        assert frame.position == pytest.approx((21.005, 105.8))

    def test_snaps_to_segment_end_and_pauses(self):
        """Should land exactly on the next point and then pause there."""
        engine = AnimationEngine(ROUTE, dwell_ms=1000)
        duration = engine.segment_duration_ms(0)
        engine.tick(0.0)

        arrived = engine.tick(duration + 5)
        still = engine.tick(duration + 5 + 999)

        assert arrived is not None and still is not None
        assert arrived.position == ROUTE[1]
        assert arrived.phase is Phase.PAUSED
        assert still.position == ROUTE[1]
        assert still.phase is Phase.PAUSED

    def test_moves_to_next_segment_after_dwell(self):
        """Should start the next segment once the dwell time has passed."""
        engine = AnimationEngine(ROUTE, dwell_ms=1000)
        duration = engine.segment_duration_ms(0)
        engine.tick(0.0)
        engine.tick(duration)

        frame = engine.tick(duration + 1000)

        assert frame is not None
        assert frame.segment_index == 1
        assert frame.phase is Phase.TRAVELING
        assert frame.position == ROUTE[1]

    def test_wraps_to_first_segment(self):
        """Should loop back to segment 0 after the last pause."""
        engine = AnimationEngine(ROUTE[:2], dwell_ms=1000)
        duration = engine.segment_duration_ms(0)
        engine.tick(0.0)
        engine.tick(duration)

        frame = engine.tick(duration + 1000)

        assert frame is not None
        assert frame.segment_index == 0
        assert frame.phase is Phase.TRAVELING
        assert frame.position == ROUTE[0]

    def test_wraps_after_last_segment_of_longer_route(self):
        """Should travel segment 0 again after pausing at the end of segment 1."""
        engine = AnimationEngine(ROUTE, dwell_ms=1000)
        first = engine.segment_duration_ms(0)
        second = engine.segment_duration_ms(1)
        engine.tick(0.0)
        engine.tick(first)
        engine.tick(first + 1000)
        paused = engine.tick(first + 1000 + second)

        frame = engine.tick(first + 1000 + second + 1000)

        assert paused is not None
        assert (paused.segment_index, paused.phase, paused.position) == (1, Phase.PAUSED, ROUTE[2])
        assert frame is not None
        assert (frame.segment_index, frame.phase, frame.position) == (0, Phase.TRAVELING, ROUTE[0])

    def test_zero_length_segment_pauses_immediately(self):
        """Should treat a segment between identical points as already travelled."""
        engine = AnimationEngine([(21.0, 105.8), (21.0, 105.8), (21.01, 105.8)])

        frame = engine.tick(0.0)

        assert frame is not None
        assert frame.phase is Phase.PAUSED
        assert frame.position == (21.0, 105.8)

    def test_bearing_follows_travel_direction(self):
        """Should face east while travelling the second, eastbound segment."""
        engine = AnimationEngine(ROUTE, dwell_ms=0)
        duration = engine.segment_duration_ms(0)
        engine.tick(0.0)
        engine.tick(duration)
        engine.tick(duration)

        frame = engine.tick(duration + 1)

        assert frame is not None
        assert frame.bearing == pytest.approx(90.0, abs=0.1)

    def test_empty_and_single_point_routes(self):
        """Should draw nothing for no points and a parked vehicle for one."""
        assert AnimationEngine([]).tick(0.0) is None

        frame = AnimationEngine([(21.0, 105.8)]).tick(0.0)
        assert frame is not None
        assert frame.phase is Phase.PAUSED

    def test_reset_starts_over(self):
        """Should restart from segment 0 on a new route."""
        engine = AnimationEngine(ROUTE)
        engine.tick(0.0)
        engine.tick(10_000_000.0)

        engine.reset(ROUTE[1:])

        assert engine.state.segment_index == 0
        assert engine.state.phase is Phase.TRAVELING
        assert engine.route == ROUTE[1:]


class TestSampleCycle:
    """Test sampling one loop of the animation."""

    def test_covers_one_loop(self):
        """Should start at the first point and end paused at the last, without wrapping."""
        frames = sample_cycle(ROUTE, sample_ms=100)

        assert frames[0].position == ROUTE[0]
        assert frames[0].phase is Phase.TRAVELING
        assert frames[-1].position == ROUTE[2]
        assert frames[-1].phase is Phase.PAUSED
        assert [f.segment_index for f in frames] == sorted(f.segment_index for f in frames)

    def test_pauses_at_every_stop(self):
        """Should hold the vehicle at each segment end for the dwell time."""
        frames = sample_cycle(ROUTE, dwell_ms=1000, sample_ms=100)

        paused = [f for f in frames if f.phase is Phase.PAUSED]
        assert {f.position for f in paused} == {ROUTE[1], ROUTE[2]}
        assert len([f for f in paused if f.segment_index == 0]) >= 10

    def test_short_routes_have_no_frames(self):
        """Should sample nothing for a route without segments."""
        assert sample_cycle([]) == []
        assert sample_cycle([(21.0, 105.8)]) == []

    def test_rejects_non_positive_step(self):
        with pytest.raises(ValueError, match="sample_ms"):
            sample_cycle(ROUTE, sample_ms=0)


class TestAnimationLoop:
    """Test driving the engine from a frame scheduler."""

    def _loop(self, route=ROUTE):
        scheduler = FakeScheduler()
        clock = FakeClock()
        frames: list[VehicleFrame] = []
        loop = AnimationLoop(AnimationEngine(route), frames.append, scheduler=scheduler, clock=clock)
        return loop, scheduler, clock, frames

    def test_runs_one_frame_per_callback(self):
        """Should produce a frame and schedule the next one on every tick."""
        loop, scheduler, clock, frames = self._loop()
        loop.start()

        scheduler.fire()
        clock.seconds = 0.5
        scheduler.fire()

        assert len(frames) == 2
        assert len(scheduler.pending) == 1
        assert loop.running

    def test_cancel_stops_frames(self):
        """Should not produce frames after cancel."""
        loop, scheduler, _clock, frames = self._loop()
        loop.start()
        scheduler.fire()

        loop.cancel()

        assert scheduler.pending == []
        assert not loop.running
        assert len(frames) == 1

    def test_restart_keeps_one_pending_frame(self):
        """Should never have two frame callbacks scheduled at once."""
        loop, scheduler, _clock, _frames = self._loop()
        loop.start()
        loop.start()
        loop.restart(ROUTE[:2])

        assert len(scheduler.pending) == 1

    def test_stale_callback_is_ignored(self):
        """Should ignore a callback from before a restart even if it still fires."""
        loop, scheduler, _clock, frames = self._loop()
        loop.start()
        stale = scheduler.handles[0]
        loop.start()

        stale.callback()

        assert frames == []

    def test_too_short_route_does_not_start(self):
        """Should not schedule frames for a route without segments."""
        loop, scheduler, _clock, _frames = self._loop(route=[(21.0, 105.8)])

        loop.start()

        assert scheduler.handles == []
        assert not loop.running
