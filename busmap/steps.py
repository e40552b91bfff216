"""Turn route segments into step-by-step instructions.

Distances are straight-line (haversine) estimates between stops, so walking
times are approximations, not routed values.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
import math

from busmap.geo import haversine_m
from busmap.models import Coordinate, Segment, TravelMode

DEFAULT_DEPARTURE = "08:00:00"
BUS_FARE = 7000
WALK_MIN_PER_KM = 12
TRANSFER_MIN_PER_KM = 15
ACCESS_WALK_THRESHOLD_KM = 0.05
TRANSFER_WALK_THRESHOLD_KM = 0.02
TRANSFER_WAIT_MIN = 2


@dataclass(frozen=True)
class Step:
    mode: TravelMode
    line_id: str
    line_name: str
    title: str
    instruction: str
    duration_min: int
    distance_km: float
    cost: int
    is_transfer: bool
    departure_time: str
    arrival_time: str
    wait_time_min: int = 0


@dataclass(frozen=True)
class StepSummary:
    duration_min: int
    distance_km: float
    cost: int
    transfers: int


def add_minutes(time_string: str, minutes: int) -> str:
    """Add minutes to an ``HH:MM[:SS]`` clock time, wrapping past midnight."""
    parts = [int(part) for part in time_string.split(":")]
    hours, mins = parts[0], parts[1]
    secs = parts[2] if len(parts) > 2 else 0
    base = datetime(2000, 1, 1, hours % 24, mins, secs)
    return (base + timedelta(minutes=minutes)).strftime("%H:%M:%S")


def _distance_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.as_tuple(), b.as_tuple()) / 1000.0


def _walk_step(title: str, instruction: str, distance_km: float, rate: int, departure: str, transfer: bool) -> Step:
    duration = math.ceil(distance_km * rate)
    return Step(
        mode=TravelMode.WALK,
        line_id="walk",
        line_name="Walking",
        title=title,
        instruction=instruction,
        duration_min=duration,
        distance_km=distance_km,
        cost=0,
        is_transfer=transfer,
        departure_time=departure,
        arrival_time=add_minutes(departure, duration),
    )


def generate_steps(
    segments: Sequence[Segment],
    origin: Coordinate | None = None,
    destination: Coordinate | None = None,
    departure_time: str | None = None,
) -> list[Step]:
    """Build the step list for a route.

    Adds an access walk from ``origin`` and an egress walk to ``destination``
    when they are more than 50 m from the first/last stop, and a transfer
    walk between consecutive segments whose stops are more than 20 m apart.

    Args:
        segments: Journey segments
        origin: Where the user starts
        destination: Where the user is going
        departure_time: ``HH:MM:SS`` departure, used for the access walk

    Returns:
        Steps in travel order
    """
    steps: list[Step] = []
    if not segments:
        return steps

    start_time = departure_time or DEFAULT_DEPARTURE
    first, last = segments[0], segments[-1]

    if origin is not None:
        distance = _distance_km(origin, first.start)
        if distance > ACCESS_WALK_THRESHOLD_KM:
            steps.append(
                _walk_step(
                    f"Walk to {first.from_stop.name}",
                    f"Walk from your starting point to the bus stop {first.from_stop.name}",
                    distance,
                    WALK_MIN_PER_KM,
                    start_time,
                    transfer=False,
                )
            )

    clock = steps[-1].arrival_time if steps else start_time
    for index, segment in enumerate(segments):
        departure = segment.departure_time or clock
        arrival = segment.arrival_time or add_minutes(departure, segment.duration_min)
        if segment.is_bus:
            title = f"Line {segment.line_name}: {segment.from_stop.name} → {segment.to_stop.name}"
            instruction = (
                f"Board line {segment.line_name} at {segment.from_stop.name}, get off at {segment.to_stop.name}"
            )
        else:
            title = f"Walk: {segment.from_stop.name} → {segment.to_stop.name}"
            instruction = f"Walk from {segment.from_stop.name} to {segment.to_stop.name}"
        steps.append(
            Step(
                mode=segment.mode,
                line_id=segment.line_id or segment.mode.value,
                line_name=segment.line_name or "Walking",
                title=title,
                instruction=instruction,
                duration_min=segment.duration_min,
                distance_km=_distance_km(segment.start, segment.end),
                cost=BUS_FARE if segment.is_bus else 0,
                is_transfer=index > 0,
                departure_time=departure,
                arrival_time=arrival,
                wait_time_min=0 if index == 0 else TRANSFER_WAIT_MIN,
            )
        )
        clock = arrival

        if index < len(segments) - 1:
            following = segments[index + 1]
            gap = _distance_km(segment.end, following.start)
            if gap > TRANSFER_WALK_THRESHOLD_KM:
                transfer = _walk_step(
                    f"Transfer: {segment.to_stop.name} → {following.from_stop.name}",
                    f"Walk from {segment.to_stop.name} to {following.from_stop.name} to change lines",
                    gap,
                    TRANSFER_MIN_PER_KM,
                    clock,
                    transfer=True,
                )
                steps.append(transfer)
                clock = transfer.arrival_time

    if destination is not None:
        distance = _distance_km(last.end, destination)
        if distance > ACCESS_WALK_THRESHOLD_KM:
            steps.append(
                _walk_step(
                    "Walk to your destination",
                    f"Walk from {last.to_stop.name} to your destination",
                    distance,
                    WALK_MIN_PER_KM,
                    clock,
                    transfer=False,
                )
            )

    return steps


def summarize_steps(steps: Sequence[Step]) -> StepSummary:
    """Totals for the step list. Transfer waits are shown per step but not added to the duration."""
    boardings = sum(1 for step in steps if step.mode is TravelMode.BUS)
    return StepSummary(
        duration_min=sum(step.duration_min for step in steps),
        distance_km=round(sum(step.distance_km for step in steps), 3),
        cost=sum(step.cost for step in steps),
        transfers=max(boardings - 1, 0),
    )
