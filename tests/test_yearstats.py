from __future__ import annotations

import threading
import time
from datetime import date

import pytest

from conftest import PACIFIC, PORTLAND, SyntheticProvider

from twilight.cache import EphemerisCache
from twilight.phases import Coordinate, DayEphemeris, PhaseKind
from twilight.yearstats import YearStatisticsCache, YearStatisticsIndex


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_percentile_counts_strictly_shorter_entries():
    index = YearStatisticsIndex(2025, daylight=[30.0, 10.0, 20.0, 20.0], night=[])

    assert index.percentile(10.0) == 0.0
    assert index.percentile(20.0) == 25.0
    assert index.percentile(30.0) == 75.0
    assert index.percentile(31.0) == 100.0
    assert index.percentile(5.0) == 0.0


def test_percentile_rounds_to_one_decimal():
    index = YearStatisticsIndex(2025, daylight=[1.0, 2.0, 3.0], night=[])

    assert index.percentile(2.0) == 33.3
    assert index.percentile(3.0) == 66.7


def test_percentile_is_monotonic():
    durations = [float(value) for value in (40, 35, 50, 35, 60, 45, 38)]
    index = YearStatisticsIndex(2025, daylight=durations, night=[])

    ranks = [index.percentile(value) for value in sorted(durations)]
    assert ranks == sorted(ranks)


def test_empty_distribution_has_no_percentile():
    index = YearStatisticsIndex(2025, daylight=[100.0], night=[])

    assert index.percentile(50.0, PhaseKind.night) is None


def test_twilight_phases_are_not_ranked():
    index = YearStatisticsIndex(2025, daylight=[100.0], night=[100.0])

    with pytest.raises(ValueError):
        index.percentile(50.0, PhaseKind.civil_dawn)


def test_build_walks_each_day_once(provider: SyntheticProvider):
    ephemeris = EphemerisCache(provider, PACIFIC)

    index = YearStatisticsIndex.build(2025, PORTLAND, ephemeris)

    assert index.count(PhaseKind.daylight) == 365
    assert index.count(PhaseKind.night) == 365
    assert len(provider.calls) == 366
    assert max(provider.call_counts().values()) == 1
    assert index.percentile(57600.0) == 99.7


def test_minimum_daylight_ranks_zero(provider: SyntheticProvider):
    ephemeris = EphemerisCache(provider, PACIFIC)
    index = YearStatisticsIndex.build(2025, PORTLAND, ephemeris)

    shortest = min(
        ephemeris.get(date(2025, 12, day), PORTLAND).daylight_seconds for day in range(1, 32)
    )
    assert index.percentile(shortest) == 0.0


def test_polar_year_has_no_daylight_distribution():
    provider = SyntheticProvider(default=lambda day: DayEphemeris(status="polar_day"))
    ephemeris = EphemerisCache(provider, PACIFIC)

    index = YearStatisticsIndex.build(2024, Coordinate(80.0, 10.0), ephemeris)

    assert index.count(PhaseKind.daylight) == 0
    assert index.count(PhaseKind.night) == 0
    assert index.percentile(86400.0) is None
    assert len(provider.calls) == 367


def test_cache_reuses_index(provider: SyntheticProvider):
    cache = YearStatisticsCache()

    first = cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))
    second = cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))

    assert first is second
    assert cache.builds == 1
    assert len(provider.calls) == 366


def test_cache_key_rounds_coordinates(provider: SyntheticProvider):
    cache = YearStatisticsCache()
    nearby = Coordinate(PORTLAND.latitude + 1e-6, PORTLAND.longitude - 1e-6)

    cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))
    cache.for_year(nearby, 2025, EphemerisCache(provider, PACIFIC))

    assert cache.builds == 1


def test_cache_entries_expire(provider: SyntheticProvider):
    clock = FakeClock()
    cache = YearStatisticsCache(ttl_seconds=60.0, clock=clock)

    cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))
    clock.now += 30.0
    cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))
    assert cache.builds == 1

    clock.now += 31.0
    cache.for_year(PORTLAND, 2025, EphemerisCache(provider, PACIFIC))
    assert cache.builds == 2


def test_cache_evicts_least_recently_used(provider: SyntheticProvider):
    cache = YearStatisticsCache(max_entries=1)
    ephemeris = EphemerisCache(provider, PACIFIC)

    cache.for_year(PORTLAND, 2024, ephemeris)
    cache.for_year(PORTLAND, 2025, ephemeris)
    assert len(cache) == 1

    cache.for_year(PORTLAND, 2024, ephemeris)
    assert cache.builds == 3


def test_concurrent_misses_build_once():
    class SlowProvider(SyntheticProvider):
        def __call__(self, day_start, day_end, coordinate):
            time.sleep(0.0005)
            return super().__call__(day_start, day_end, coordinate)

    provider = SlowProvider()
    cache = YearStatisticsCache()
    barrier = threading.Barrier(4)
    results = []

    def worker():
        ephemeris = EphemerisCache(provider, PACIFIC)
        barrier.wait()
        results.append(cache.for_year(PORTLAND, 2025, ephemeris))

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(results) == 4
    assert all(result is results[0] for result in results)
    assert cache.builds == 1
    assert len(provider.calls) == 366


def test_failed_build_does_not_block_later_callers():
    class BrokenProvider(SyntheticProvider):
        def __call__(self, day_start, day_end, coordinate):
            raise RuntimeError("kernel missing")

    cache = YearStatisticsCache()

    with pytest.raises(RuntimeError):
        cache.for_year(PORTLAND, 2025, EphemerisCache(BrokenProvider(), PACIFIC))

    index = cache.for_year(PORTLAND, 2025, EphemerisCache(SyntheticProvider(), PACIFIC))
    assert index.count() == 365
