from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone

from models.records import Sample
from services.spike_filter import SpikeFilter

_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _series(values):
    return tuple(
        Sample(timestamp=_START + timedelta(minutes=10 * index), value=value)
        for index, value in enumerate(values)
    )


def test_short_series_is_returned_unchanged() -> None:
    spike_filter = SpikeFilter()
    single = _series([1013.0])

    assert spike_filter.filter((), 4.0) == ()
    assert spike_filter.filter(single, 4.0) is single


def test_single_outlier_is_dropped() -> None:
    values = [1013.0] * 10
    values[4] = 1100.0
    series = _series(values)

    filtered = SpikeFilter().filter(series, 4.0)

    assert len(filtered) == len(series) - 1
    assert all(sample.value == 1013.0 for sample in filtered)


def test_step_change_is_rejected_until_values_return() -> None:
    # A genuine jump of 10 hPa is treated as a run of spikes.
    series = _series([1000.0, 1001.0, 1011.0, 1011.5, 1012.0, 1004.0, 1003.5])

    filtered = SpikeFilter().filter(series, 4.0)

    assert [sample.value for sample in filtered] == [1000.0, 1001.0, 1004.0, 1003.5]


def test_output_keeps_first_sample_and_bounded_steps() -> None:
    rng = random.Random(7)
    for _ in range(50):
        values = [1013.0 + rng.uniform(-15, 15) for _ in range(40)]
        series = _series(values)

        filtered = SpikeFilter().filter(series, 4.0)

        assert filtered[0] == series[0]
        for previous, current in zip(filtered, filtered[1:]):
            assert abs(current.value - previous.value) <= 4.0


def test_boundary_delta_is_kept() -> None:
    filtered = SpikeFilter().filter(_series([10.0, 14.0, 18.0]), 4.0)

    assert len(filtered) == 3


def test_drops_are_logged_with_metric_context(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="services.spike_filter"):
        SpikeFilter().filter(_series([1013.0, 1100.0, 1013.0]), 4.0, metric="pressure")

    records = [r for r in caplog.records if r.name == "services.spike_filter"]
    assert records
    assert records[0].metric == "pressure"
    assert records[0].dropped == 1
