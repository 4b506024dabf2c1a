"""Solar crossing computations backed by JPL DE kernels."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple

import erfa
import numpy as np
import spiceypy as spice
from spiceypy.utils.exceptions import SpiceyError

from .phases import Coordinate, DayEphemeris

__all__ = [
    "load_ephemeris",
    "compute_day_ephemeris",
    "loaded_files",
    "SpiceEphemerisProvider",
    "EphemerisError",
    "TWILIGHT_ANGLES",
]

LOGGER = logging.getLogger(__name__)

TWILIGHT_ANGLES: Dict[str, float] = {
    "official": -0.833,
    "civil": -6.0,
    "nautical": -12.0,
    "astronomical": -18.0,
}

# (rising field, setting field) filled for each altitude threshold.
_CROSSING_FIELDS: Dict[str, Tuple[str, str]] = {
    "official": ("sunrise", "sunset"),
    "civil": ("civil_dawn", "civil_dusk"),
    "nautical": ("nautical_dawn", "nautical_dusk"),
    "astronomical": ("astro_dawn", "astro_dusk"),
}

EARTH_EQUATORIAL_RADIUS_KM = 6378.137  # WGS84 equatorial radius in kilometers.
EARTH_EQUATORIAL_RADIUS_M = EARTH_EQUATORIAL_RADIUS_KM * 1000.0
EARTH_FLATTENING = 1.0 / 298.257223563  # WGS84 flattening.

SAMPLE_STEP = timedelta(minutes=5)
_RESOLUTION = timedelta(seconds=1)

_LOADED_FILES: Optional[List[str]] = None
_LOAD_LOCK = Lock()


class EphemerisError(RuntimeError):
    """Raised when ephemeris loading or computation fails."""


@dataclass(frozen=True)
class _TimeScales:
    """Time-scale representations of a batch of UTC instants."""

    ut1: Tuple[np.ndarray, np.ndarray]
    tt: Tuple[np.ndarray, np.ndarray]
    et: np.ndarray


def load_ephemeris(bsp_dir: str) -> List[str]:
    """Load all SPK kernels from *bsp_dir* using :mod:`spiceypy`.

    Parameters
    ----------
    bsp_dir:
        Directory containing one or more ``.bsp`` files, or a single
        ``.bsp`` file.

    Returns
    -------
    list[str]
        Sorted list of loaded kernel file names.

    Raises
    ------
    EphemerisError
        If the path is missing or holds no ``.bsp`` files.
    """

    global _LOADED_FILES

    if _LOADED_FILES is not None:
        return _LOADED_FILES

    path = Path(bsp_dir).expanduser()
    if not path.exists():
        raise EphemerisError(f"Ephemeris path not found: {path}")

    with _LOAD_LOCK:
        if _LOADED_FILES is not None:
            return _LOADED_FILES

        if path.is_file():
            bsp_files = [path] if path.suffix.lower() == ".bsp" else []
        else:
            bsp_files = sorted(
                file
                for file in path.iterdir()
                if file.is_file() and file.suffix.lower() == ".bsp"
            )
        if not bsp_files:
            raise EphemerisError(f"No .bsp ephemeris files found at: {path}")

        loaded: List[str] = []
        try:
            for bsp_file in bsp_files:
                spice.furnsh(str(bsp_file))
                loaded.append(bsp_file.name)
        except Exception as exc:  # pragma: no cover - corrupt kernel files.
            spice.kclear()
            raise EphemerisError(
                f"Failed to load ephemeris file '{bsp_file}': {exc}"
            ) from exc

        _LOADED_FILES = loaded
        LOGGER.info(json.dumps({"event": "ephemeris_loaded", "files": loaded}))
        return loaded


def loaded_files() -> List[str]:
    return list(_LOADED_FILES or [])


def _to_timescales(moments: Sequence[datetime]) -> _TimeScales:
    """Convert timezone-aware datetimes into ERFA/SPICE time scales."""

    utc_moments = []
    for moment in moments:
        if moment.tzinfo is None:
            raise ValueError("datetime must be timezone-aware")
        utc_moments.append(moment.astimezone(UTC))

    utc1, utc2 = erfa.dtf2d(
        "UTC",
        np.array([m.year for m in utc_moments]),
        np.array([m.month for m in utc_moments]),
        np.array([m.day for m in utc_moments]),
        np.array([m.hour for m in utc_moments]),
        np.array([m.minute for m in utc_moments]),
        np.array([m.second + m.microsecond / 1_000_000 for m in utc_moments]),
    )
    tai1, tai2 = erfa.utctai(utc1, utc2)
    tt1, tt2 = erfa.taitt(tai1, tai2)
    ut11, ut12 = erfa.utcut1(utc1, utc2, 0.0)
    et = (tt1 - erfa.DJ00) * erfa.DAYSEC + tt2 * erfa.DAYSEC
    return _TimeScales(ut1=(ut11, ut12), tt=(tt1, tt2), et=np.atleast_1d(et))


def _site_vector(lat_rad: float, lon_rad: float, elev_m: float) -> np.ndarray:
    """Return the geocentric position vector for the observer in ITRF (km)."""

    altitude_km = elev_m / 1000.0
    return np.array(
        spice.georec(
            lon_rad, lat_rad, altitude_km, EARTH_EQUATORIAL_RADIUS_KM, EARTH_FLATTENING
        ),
        dtype=float,
    )


def _horizon_dip_degrees(elev_m: float) -> float:
    """Approximate depression of the horizon due to observer height."""

    if elev_m <= 0:
        return 0.0
    # Small-angle approximation valid for h << R.
    return math.degrees(math.sqrt(2.0 * elev_m / EARTH_EQUATORIAL_RADIUS_M))


def _sun_altitudes(
    moments: Sequence[datetime],
    site_vector: np.ndarray,
    site_up: np.ndarray,
) -> np.ndarray:
    """Apparent solar altitudes in degrees for each instant in *moments*."""

    times = _to_timescales(moments)
    try:
        sun_vectors, _ = spice.spkpos("SUN", times.et.tolist(), "J2000", "LT+S", "EARTH")
    except SpiceyError as exc:
        raise EphemerisError(f"Solar position unavailable: {exc}") from exc
    sun_vectors = np.asarray(sun_vectors, dtype=float).reshape(-1, 3)
    rotations = np.asarray(
        erfa.c2t06a(*times.tt, *times.ut1, 0.0, 0.0), dtype=float
    ).reshape(-1, 3, 3)
    topocentric = np.einsum("nij,nj->ni", rotations, sun_vectors) - site_vector
    norms = np.linalg.norm(topocentric, axis=1)
    if np.any(norms == 0):
        raise EphemerisError("Degenerate topocentric vector encountered")
    sines = np.clip((topocentric @ site_up) / norms, -1.0, 1.0)
    return np.degrees(np.arcsin(sines))


def _refine_crossings(
    brackets: List[Tuple[datetime, datetime, float]],
    site_vector: np.ndarray,
    site_up: np.ndarray,
    max_iterations: int = 24,
) -> List[datetime]:
    """Bisect every ``(start, end, threshold)`` bracket in lockstep."""

    if not brackets:
        return []
    lows = [start for start, _, _ in brackets]
    highs = [end for _, end, _ in brackets]
    thresholds = np.array([threshold for _, _, threshold in brackets])
    low_vals = _sun_altitudes(lows, site_vector, site_up) - thresholds

    for _ in range(max_iterations):
        if all(high - low <= _RESOLUTION for low, high in zip(lows, highs)):
            break
        mids = [low + (high - low) / 2 for low, high in zip(lows, highs)]
        mid_vals = _sun_altitudes(mids, site_vector, site_up) - thresholds
        for idx, mid in enumerate(mids):
            if low_vals[idx] * mid_vals[idx] <= 0:
                highs[idx] = mid
            else:
                lows[idx] = mid
                low_vals[idx] = mid_vals[idx]
    return [low + (high - low) / 2 for low, high in zip(lows, highs)]


def _refine_transit(
    start_dt: datetime,
    end_dt: datetime,
    site_vector: np.ndarray,
    site_up: np.ndarray,
    max_iterations: int = 40,
) -> datetime:
    """Ternary search for the altitude maximum inside ``[start_dt, end_dt]``."""

    low, high = start_dt, end_dt
    for _ in range(max_iterations):
        if high - low <= _RESOLUTION:
            break
        third = (high - low) / 3
        left, right = low + third, high - third
        left_alt, right_alt = _sun_altitudes([left, right], site_vector, site_up)
        if left_alt < right_alt:
            low = left
        else:
            high = right
    return low + (high - low) / 2


def _twilight_altitude_degrees(twilight: str, elev_m: float) -> float:
    try:
        base_altitude = TWILIGHT_ANGLES[twilight]
    except KeyError as exc:
        raise ValueError(f"Unsupported twilight selector: {twilight}") from exc
    return base_altitude - _horizon_dip_degrees(elev_m)


def compute_day_ephemeris(
    day_start: datetime,
    day_end: datetime,
    lat: float,
    lon: float,
    elev_m: float = 0.0,
) -> DayEphemeris:
    """Compute every solar crossing inside ``[day_start, day_end)``.

    Parameters
    ----------
    day_start, day_end:
        Timezone-aware bounds of the local day.
    lat, lon:
        Geographic coordinates in degrees (east-positive longitude).
    elev_m:
        Observer elevation above mean sea level in meters.

    Returns
    -------
    DayEphemeris
        First rising and first setting crossing for each threshold, the
        transit, and ``polar_day``/``polar_night`` when nothing crosses.
    """

    if _LOADED_FILES is None:
        raise EphemerisError("Ephemeris kernels have not been loaded")
    if day_end <= day_start:
        raise ValueError("day_end must follow day_start")

    site_vector = _site_vector(math.radians(lat), math.radians(lon), elev_m)
    site_up = site_vector / np.linalg.norm(site_vector)

    times: List[datetime] = []
    current = day_start
    while current < day_end:
        times.append(current)
        current += SAMPLE_STEP
    times.append(day_end)
    altitudes = _sun_altitudes(times, site_vector, site_up)

    brackets: List[Tuple[datetime, datetime, float]] = []
    targets: List[str] = []
    for twilight, (rising_field, setting_field) in _CROSSING_FIELDS.items():
        threshold = _twilight_altitude_degrees(twilight, elev_m)
        samples = altitudes - threshold
        rising = setting = None
        for idx in range(1, len(times)):
            prev_val, curr_val = samples[idx - 1], samples[idx]
            if rising is None and prev_val < 0 <= curr_val:
                rising = idx
            if setting is None and prev_val >= 0 > curr_val:
                setting = idx
        for field_name, idx in ((rising_field, rising), (setting_field, setting)):
            if idx is not None:
                brackets.append((times[idx - 1], times[idx], threshold))
                targets.append(field_name)

    crossings = {
        name: moment
        for name, moment in zip(
            targets, _refine_crossings(brackets, site_vector, site_up)
        )
        if moment < day_end
    }

    transit: Optional[datetime] = None
    peak = int(np.argmax(altitudes))
    if 0 < peak < len(times) - 1:
        transit = _refine_transit(times[peak - 1], times[peak + 1], site_vector, site_up)

    status = "ok"
    if not crossings:
        official = _twilight_altitude_degrees("official", elev_m)
        status = "polar_day" if float(np.min(altitudes)) > official else "polar_night"

    return DayEphemeris(transit=transit, status=status, **crossings)


class SpiceEphemerisProvider:
    """Solar ephemeris oracle over the kernels loaded by :func:`load_ephemeris`."""

    def __call__(
        self, day_start: datetime, day_end: datetime, coordinate: Coordinate
    ) -> DayEphemeris:
        return compute_day_ephemeris(
            day_start,
            day_end,
            coordinate.latitude,
            coordinate.longitude,
            coordinate.elevation,
        )
