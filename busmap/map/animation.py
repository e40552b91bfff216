"""Vehicle animation along a route polyline.

``AnimationEngine`` is a pure two-state machine (travelling a segment, or
dwelling at the stop that ends it) advanced by ``tick(now_ms)``.
``AnimationLoop`` drives it from a frame scheduler and owns the pending
callback so that cancelling is immediate.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
import time
from typing import Any, Protocol

from busmap.geo import bearing_deg, ease_in_out_quad, haversine_m, interpolate
from busmap.logging import get_logger

DEFAULT_SPEED = 150.0
DEFAULT_DWELL_MS = 1000.0


class Phase(str, Enum):
    TRAVELING = "traveling"
    PAUSED = "paused"


@dataclass
class AnimationState:
    segment_index: int = 0
    phase: Phase = Phase.TRAVELING
    phase_started_ms: float | None = None


@dataclass(frozen=True)
class VehicleFrame:
    position: tuple[float, float]
    bearing: float
    segment_index: int
    phase: Phase


class AnimationEngine:
    """Moves a vehicle along ``route`` forever, pausing at every point.

    Travel time per segment is proportional to its length
    (``haversine / speed``), motion is eased in and out, and after the last
    segment's pause the vehicle starts over at segment 0.
    """

    def __init__(
        self,
        route: Sequence[tuple[float, float]],
        speed: float = DEFAULT_SPEED,
        dwell_ms: float = DEFAULT_DWELL_MS,
    ):
        if speed <= 0:
            raise ValueError(f"speed must be positive, got {speed}")
        self.speed = speed
        self.dwell_ms = dwell_ms
        self.route: list[tuple[float, float]] = []
        self.state = AnimationState()
        self._bearing = 0.0
        self.reset(route)

    def reset(self, route: Sequence[tuple[float, float]]) -> None:
        """Start over from segment 0 on a new route."""
        self.route = [(float(p[0]), float(p[1])) for p in route]
        self.state = AnimationState()
        self._bearing = bearing_deg(self.route[0], self.route[1]) if len(self.route) >= 2 else 0.0

    @property
    def segment_count(self) -> int:
        return max(len(self.route) - 1, 0)

    def segment_duration_ms(self, index: int) -> float:
        start, end = self.route[index], self.route[index + 1]
        return haversine_m(start, end) / self.speed * 1000.0

    def _frame(self, position: tuple[float, float]) -> VehicleFrame:
        return VehicleFrame(
            position=position,
            bearing=self._bearing,
            segment_index=self.state.segment_index,
            phase=self.state.phase,
        )

    def tick(self, now_ms: float) -> VehicleFrame | None:
        """Advance to ``now_ms`` and return where the vehicle should be drawn.

        Returns:
            The frame to draw, or None when the route has no points
        """
        if not self.route:
            return None
        if self.segment_count == 0:
            return VehicleFrame(self.route[0], self._bearing, 0, Phase.PAUSED)

        state = self.state
        if state.phase_started_ms is None:
            state.phase_started_ms = now_ms
        elapsed = now_ms - state.phase_started_ms
        start = self.route[state.segment_index]
        end = self.route[state.segment_index + 1]

        if state.phase is Phase.TRAVELING:
            duration = self.segment_duration_ms(state.segment_index)
            if duration > 0:
                self._bearing = bearing_deg(start, end)
            # Zero-length segments count as already arrived
            if duration <= 0 or elapsed >= duration:
                state.phase = Phase.PAUSED
                state.phase_started_ms = now_ms
                return self._frame(end)
            return self._frame(interpolate(start, end, ease_in_out_quad(elapsed / duration)))

        if elapsed < self.dwell_ms:
            return self._frame(end)

        state.segment_index = (state.segment_index + 1) % self.segment_count
        state.phase = Phase.TRAVELING
        state.phase_started_ms = now_ms
        return self._frame(self.route[state.segment_index])


def sample_cycle(
    route: Sequence[tuple[float, float]],
    speed: float = DEFAULT_SPEED,
    dwell_ms: float = DEFAULT_DWELL_MS,
    sample_ms: float = 1000.0,
) -> list[VehicleFrame]:
    """Tick a fresh engine every ``sample_ms`` through one full loop of ``route``.

    Sampling stops just before the vehicle wraps back to segment 0, so the
    frames can be replayed on repeat.

    Returns:
        Frames in time order, empty for a route without segments
    """
    if sample_ms <= 0:
        raise ValueError(f"sample_ms must be positive, got {sample_ms}")
    engine = AnimationEngine(route, speed=speed, dwell_ms=dwell_ms)
    if engine.segment_count == 0:
        return []

    frames: list[VehicleFrame] = []
    now_ms = 0.0
    while True:
        frame = engine.tick(now_ms)
        if frame is None:
            break
        wrapped = frame.segment_index == 0 and frame.phase is Phase.TRAVELING
        if frames and wrapped and frames[-1].phase is Phase.PAUSED:
            break
        frames.append(frame)
        now_ms += sample_ms
    return frames


class Cancellable(Protocol):
    def cancel(self) -> Any: ...  # noqa: ANN401


class FrameScheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class AnimationLoop:
    """Runs an engine once per frame until cancelled.

    ``scheduler`` is anything with asyncio's ``call_later`` signature; by
    default the running event loop is used when the loop starts.
    """

    def __init__(
        self,
        engine: AnimationEngine,
        on_frame: Callable[[VehicleFrame], None],
        scheduler: FrameScheduler | None = None,
        clock: Callable[[], float] | None = None,
        frame_interval: float = 1 / 60,
    ):
        self.engine = engine
        self.on_frame = on_frame
        self.scheduler = scheduler
        self.clock = clock or time.monotonic
        self.frame_interval = frame_interval
        self._handle: Cancellable | None = None
        self._generation = 0
        self.logger = get_logger(f"{__name__}.AnimationLoop")

    @property
    def running(self) -> bool:
        return self._handle is not None

    def _resolve_scheduler(self) -> FrameScheduler:
        if self.scheduler is None:
            self.scheduler = asyncio.get_running_loop()
        return self.scheduler

    def start(self) -> None:
        """Begin animating; a loop that is already running is restarted."""
        self.cancel()
        if self.engine.segment_count == 0:
            self.logger.debug("Route too short to animate", points=len(self.engine.route))
            return
        self._generation += 1
        generation = self._generation
        self._handle = self._resolve_scheduler().call_later(0, lambda: self._on_tick(generation))
        self.logger.debug("Animation started", segments=self.engine.segment_count)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def restart(self, route: Sequence[tuple[float, float]]) -> None:
        self.cancel()
        self.engine.reset(route)
        self.start()

    def _on_tick(self, generation: int) -> None:
        if self._handle is None or generation != self._generation:
            return
        frame = self.engine.tick(self.clock() * 1000.0)
        if frame is not None:
            self.on_frame(frame)
        # on_frame may have cancelled or restarted the loop
        if self._handle is not None and generation == self._generation:
            self._handle = self._resolve_scheduler().call_later(
                self.frame_interval, lambda: self._on_tick(generation)
            )
