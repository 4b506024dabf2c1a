"""Turning a day's solar crossings into a contiguous timeline of phases."""

from __future__ import annotations

from datetime import date, timedelta, tzinfo
from itertools import pairwise
from typing import List

from .cache import local_midnight
from .phases import (
    BOUNDARY_PHASES,
    PHASE_BANDS,
    PRECEDING_PHASES,
    DayEphemeris,
    PhaseKind,
    PhaseSegment,
)

__all__ = ["SegmentBuilder"]

_POLAR_PHASES = {
    "polar_day": PhaseKind.daylight,
    "polar_night": PhaseKind.night,
}


def _leading_phase(first_name: str, last_name: str) -> PhaseKind:
    """Phase between midnight and the day's first crossing.

    The altitude band is fixed by the first crossing. Within that band the
    evening phase of the day's last crossing wins, so a summer night that
    never reaches full darkness stays Astronomical Dusk.
    """

    expected = PRECEDING_PHASES[first_name]
    evening = BOUNDARY_PHASES[last_name]
    if PHASE_BANDS[evening] == PHASE_BANDS[expected]:
        return evening
    return expected


class SegmentBuilder:
    """Builds the phase segments of local days in one time zone.

    A day's timeline runs from local midnight to the first crossing of the
    following day, so the segment that straddles midnight (normally Night)
    is produced once, by the day on which it begins. The stretch between
    midnight and the day's first crossing is still returned, flagged
    ``carried_over``, so the timeline covers the whole day.
    """

    def __init__(self, zone: tzinfo):
        self.zone = zone

    def build(
        self, day: date, today: DayEphemeris, tomorrow: DayEphemeris
    ) -> List[PhaseSegment]:
        midnight = local_midnight(day, self.zone)
        next_midnight = local_midnight(day + timedelta(days=1), self.zone)

        bounds = [
            (moment, name)
            for moment, name in today.boundaries()
            if midnight <= moment < next_midnight
        ]
        upcoming = [
            (moment, name)
            for moment, name in tomorrow.boundaries()
            if moment >= next_midnight
        ]
        if upcoming:
            tail_end, tail_boundary = upcoming[0]
        else:
            tail_end, tail_boundary = next_midnight, None

        if not bounds:
            kind = _POLAR_PHASES.get(today.status)
            if kind is None:
                return []
            return [PhaseSegment(kind, midnight, tail_end, None, tail_boundary)]

        segments: List[PhaseSegment] = []
        first_moment, first_name = bounds[0]
        if first_moment > midnight:
            segments.append(
                PhaseSegment(
                    _leading_phase(first_name, bounds[-1][1]),
                    midnight,
                    first_moment,
                    None,
                    first_name,
                    carried_over=True,
                )
            )

        for (start, start_name), (end, end_name) in pairwise(bounds):
            segments.append(
                PhaseSegment(BOUNDARY_PHASES[start_name], start, end, start_name, end_name)
            )

        last_moment, last_name = bounds[-1]
        segments.append(
            PhaseSegment(
                BOUNDARY_PHASES[last_name], last_moment, tail_end, last_name, tail_boundary
            )
        )
        return segments
