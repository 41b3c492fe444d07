import math

import pytest

from dubai_analysis.errors import InvalidRequestError
from dubai_analysis.forecast import MAX_PERIODS, OUT_OF_RANGE, SAMPLE_SERIES, generate_simple_forecast, z_score


def test_constant_growth_has_zero_width_bands():
    prices = [100.0, 110.0, 121.0]
    out = generate_simple_forecast(prices, ["2024-01-01", "2024-02-01", "2024-03-01"], 2, "month")

    assert out["avg_growth_rate"] == pytest.approx(0.1)
    first, second = out["forecast"]
    assert first["date"] == "2024-03-31"
    assert first["value"] == pytest.approx(133.1)
    assert second["value"] == pytest.approx(146.41)
    assert first["lower_bound"] == first["upper_bound"] == first["value"]
    assert out["annualized_roi"] == round(1.1**12 - 1, 4)
    assert out["metadata"] == {"forecast_method": "average_growth", "data_points_used": 3}


def test_bands_widen_with_horizon():
    series = SAMPLE_SERIES["palm-villa"]
    out = generate_simple_forecast(series["prices"], series["dates"], 4, "quarter", confidence=0.9)
    widths = [p["upper_bound"] - p["lower_bound"] for p in out["forecast"]]
    assert widths == sorted(widths)
    assert widths[3] == pytest.approx(widths[0] * math.sqrt(4), rel=1e-2)
    assert out["confidence_level"] == 0.9


@pytest.mark.parametrize(
    "confidence,z",
    [(0.99, 2.576), (0.98, 2.326), (0.95, 1.96), (0.9, 1.645), (0.85, 1.44), (0.8, 1.282), (0.5, 1.0)],
)
def test_z_score_buckets(confidence, z):
    assert z_score(confidence) == z


@pytest.mark.parametrize(
    "prices,dates,periods,interval,message",
    [
        ([1, 2], ["2024-01-01", "2024-02-01"], 3, "month", "At least 3 price points"),
        ([1, 2, 3], ["2024-01-01"], 3, "month", "Number of dates must match"),
        ([1, 2, 3], ["a", "b", "c"], 0, "month", "Invalid number of periods"),
        ([1, 2, 3], ["a", "b", "c"], 3, "decade", "Interval is required"),
        ([1, 2, 3], ["a", "b", "not-a-date"], 3, "month", "Invalid date"),
        ([0, 2, 3], ["2024-01-01", "2024-02-01", "2024-03-01"], 3, "month", "Prices must be positive"),
    ],
)
def test_invalid_input_is_rejected(prices, dates, periods, interval, message):
    with pytest.raises(InvalidRequestError) as exc:
        generate_simple_forecast(prices, dates, periods, interval)
    assert exc.value.message.startswith(message)


def test_periods_above_cap_are_rejected():
    with pytest.raises(InvalidRequestError) as exc:
        generate_simple_forecast([1, 2, 3], ["2024-01-01", "2024-02-01", "2024-03-01"], MAX_PERIODS + 1, "month")
    assert exc.value.message == f"Invalid number of periods (must be 1-{MAX_PERIODS})"


def test_explosive_growth_is_invalid_request_not_overflow():
    dates = ["2024-01-01", "2024-01-02", "2024-01-03"]
    with pytest.raises(InvalidRequestError) as exc:
        generate_simple_forecast([1, 100, 10000], dates, 3, "day")
    assert exc.value.message == OUT_OF_RANGE


def test_unbounded_forecast_values_are_invalid_request():
    dates = ["2024-01-01", "2024-01-02", "2024-01-03"]
    with pytest.raises(InvalidRequestError) as exc:
        generate_simple_forecast([1, 1e150, 1e300], dates, 10, "year")
    assert exc.value.message == OUT_OF_RANGE
