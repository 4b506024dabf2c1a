"""Value types shared by the segmentation and statistics layers."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

__all__ = [
    "Coordinate",
    "DayEphemeris",
    "PhaseKind",
    "PhaseSegment",
    "BOUNDARY_NAMES",
    "BOUNDARY_PHASES",
    "PHASE_BANDS",
    "PRECEDING_PHASES",
    "MORNING_BOUNDARIES",
    "EVENING_BOUNDARIES",
]


class PhaseKind(str, Enum):
    """Named illumination phases, in their order across a normal day."""

    night = "night"
    astro_dawn = "astro_dawn"
    nautical_dawn = "nautical_dawn"
    civil_dawn = "civil_dawn"
    daylight = "daylight"
    civil_dusk = "civil_dusk"
    nautical_dusk = "nautical_dusk"
    astro_dusk = "astro_dusk"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    PhaseKind.night: "Night",
    PhaseKind.astro_dawn: "Astronomical Dawn",
    PhaseKind.nautical_dawn: "Nautical Dawn",
    PhaseKind.civil_dawn: "Civil Dawn",
    PhaseKind.daylight: "Daylight",
    PhaseKind.civil_dusk: "Civil Dusk",
    PhaseKind.nautical_dusk: "Nautical Dusk",
    PhaseKind.astro_dusk: "Astronomical Dusk",
}

# Each crossing opens the phase that follows it.
BOUNDARY_PHASES: Dict[str, PhaseKind] = {
    "astro_dawn": PhaseKind.astro_dawn,
    "nautical_dawn": PhaseKind.nautical_dawn,
    "civil_dawn": PhaseKind.civil_dawn,
    "sunrise": PhaseKind.daylight,
    "sunset": PhaseKind.civil_dusk,
    "civil_dusk": PhaseKind.nautical_dusk,
    "nautical_dusk": PhaseKind.astro_dusk,
    "astro_dusk": PhaseKind.night,
}

BOUNDARY_NAMES: Tuple[str, ...] = tuple(BOUNDARY_PHASES)

# Phase that ends at each crossing over a full day.
PRECEDING_PHASES: Dict[str, PhaseKind] = {
    name: BOUNDARY_PHASES[BOUNDARY_NAMES[idx - 1]]
    for idx, name in enumerate(BOUNDARY_NAMES)
}

# Solar altitude band of each phase, darkest first.
PHASE_BANDS: Dict[PhaseKind, int] = {
    PhaseKind.night: 0,
    PhaseKind.astro_dawn: 1,
    PhaseKind.astro_dusk: 1,
    PhaseKind.nautical_dawn: 2,
    PhaseKind.nautical_dusk: 2,
    PhaseKind.civil_dawn: 3,
    PhaseKind.civil_dusk: 3,
    PhaseKind.daylight: 4,
}

MORNING_BOUNDARIES: FrozenSet[str] = frozenset(
    ("astro_dawn", "nautical_dawn", "civil_dawn", "sunrise")
)

EVENING_BOUNDARIES: FrozenSet[str] = frozenset(
    ("sunset", "civil_dusk", "nautical_dusk", "astro_dusk")
)


@dataclass(frozen=True)
class Coordinate:
    """Observer location. Elevation only refines the horizon dip."""

    latitude: float
    longitude: float
    elevation: float = 0.0

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    def cache_key(self, precision: int = 4) -> Tuple[float, float, int]:
        return (
            round(self.latitude, precision),
            round(self.longitude, precision),
            int(round(self.elevation)),
        )


@dataclass(frozen=True)
class DayEphemeris:
    """Solar crossings for one local day; any instant may be missing.

    ``status`` tells the all-missing cases apart: ``polar_day`` and
    ``polar_night`` are valid sky states, ``unavailable`` means the oracle
    could not resolve the day.
    """

    transit: Optional[datetime] = None
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    civil_dawn: Optional[datetime] = None
    civil_dusk: Optional[datetime] = None
    nautical_dawn: Optional[datetime] = None
    nautical_dusk: Optional[datetime] = None
    astro_dawn: Optional[datetime] = None
    astro_dusk: Optional[datetime] = None
    status: str = "ok"

    @classmethod
    def unavailable(cls) -> "DayEphemeris":
        return cls(status="unavailable")

    def boundaries(self) -> List[Tuple[datetime, str]]:
        """Present phase boundaries in chronological order (transit excluded)."""

        present = [
            (getattr(self, name), name)
            for name in BOUNDARY_NAMES
            if getattr(self, name) is not None
        ]
        present.sort(key=lambda item: item[0])
        return present

    def as_dict(self) -> Dict[str, object]:
        return {field.name: getattr(self, field.name) for field in fields(self)}

    @property
    def daylight_seconds(self) -> Optional[float]:
        if self.sunrise is None or self.sunset is None or self.sunset <= self.sunrise:
            return None
        return (self.sunset - self.sunrise).total_seconds()


@dataclass(frozen=True)
class PhaseSegment:
    """One stretch of a single phase between two boundaries.

    ``start_boundary``/``end_boundary`` name the crossings at either edge and
    are ``None`` where the edge is a local midnight. ``carried_over`` marks
    the stretch from midnight to the first crossing, which belongs to the
    previous day's trailing segment.
    """

    kind: PhaseKind
    start: datetime
    end: datetime
    start_boundary: Optional[str] = None
    end_boundary: Optional[str] = None
    carried_over: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()

    def clipped(self, start: datetime, end: datetime) -> timedelta:
        """Length of the overlap with ``[start, end)``."""

        overlap = min(self.end, end) - max(self.start, start)
        return max(overlap, timedelta(0))
