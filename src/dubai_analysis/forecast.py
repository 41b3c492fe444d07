from __future__ import annotations

import math
from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

from .errors import InvalidRequestError

INTERVAL_DAYS = {"day": 1, "week": 7, "month": 30, "quarter": 90, "year": 365}
PERIODS_PER_YEAR = {"day": 365, "week": 52, "month": 12, "quarter": 4, "year": 1}
MAX_PERIODS = 120
OUT_OF_RANGE = "Forecast values are out of range for the given price series"

SAMPLE_SERIES: dict[str, dict[str, list[Any]]] = {
    "downtown-apartment": {
        "prices": [1550, 1580, 1620, 1680, 1710, 1750, 1790, 1830, 1850],
        "dates": ["2022-01-01", "2022-04-01", "2022-07-01", "2022-10-01", "2023-01-01",
                  "2023-04-01", "2023-07-01", "2023-10-01", "2024-01-01"],
    },
    "marina-apartment": {
        "prices": [1450, 1470, 1500, 1540, 1580, 1610, 1650, 1680, 1700],
        "dates": ["2022-01-01", "2022-04-01", "2022-07-01", "2022-10-01", "2023-01-01",
                  "2023-04-01", "2023-07-01", "2023-10-01", "2024-01-01"],
    },
    "palm-villa": {
        "prices": [2200, 2250, 2320, 2400, 2480, 2550, 2650, 2750, 2850],
        "dates": ["2022-01-01", "2022-04-01", "2022-07-01", "2022-10-01", "2023-01-01",
                  "2023-04-01", "2023-07-01", "2023-10-01", "2024-01-01"],
    },
}


def _finite(compute: Callable[[], float]) -> float:
    try:
        value = compute()
    except OverflowError as e:
        raise InvalidRequestError(OUT_OF_RANGE) from e
    if not math.isfinite(value):
        raise InvalidRequestError(OUT_OF_RANGE)
    return value


def z_score(confidence: float) -> float:
    for threshold, z in ((0.99, 2.576), (0.98, 2.326), (0.95, 1.96), (0.90, 1.645), (0.85, 1.44), (0.80, 1.282)):
        if confidence >= threshold:
            return z
    return 1.0


def generate_simple_forecast(
    prices: list[float],
    dates: list[str],
    periods: int,
    interval: str,
    confidence: float = 0.95,
) -> dict[str, Any]:
    """
    Project prices forward by the mean period-over-period growth rate.

    Bands widen with sqrt(step) using the population std-dev of the
    observed growth rates.
    """
    if len(prices) < 3:
        raise InvalidRequestError("At least 3 price points are required for forecasting")
    if len(dates) != len(prices):
        raise InvalidRequestError("Number of dates must match number of prices")
    if periods <= 0 or periods > MAX_PERIODS:
        raise InvalidRequestError(f"Invalid number of periods (must be 1-{MAX_PERIODS})")
    if interval not in INTERVAL_DAYS:
        raise InvalidRequestError("Interval is required (day, week, month, quarter, year)")
    if any(p <= 0 for p in prices[:-1]):
        raise InvalidRequestError("Prices must be positive")
    try:
        last_date = date.fromisoformat(dates[-1][:10])
    except ValueError as e:
        raise InvalidRequestError(f"Invalid date: {dates[-1]!r}") from e

    rates = [(prices[i] - prices[i - 1]) / prices[i - 1] for i in range(1, len(prices))]
    avg = sum(rates) / len(rates)
    std = _finite(lambda: math.sqrt(sum((r - avg) ** 2 for r in rates) / len(rates)))
    z = z_score(confidence)
    last_price = prices[-1]
    step = timedelta(days=INTERVAL_DAYS[interval])

    points = []
    for i in range(periods):
        expected = _finite(lambda: last_price * (1 + avg) ** (i + 1))
        margin = _finite(lambda: z * std * last_price * math.sqrt(i + 1))
        points.append(
            {
                "date": (last_date + step * (i + 1)).isoformat(),
                "value": round(expected, 2),
                "lower_bound": round(expected - margin, 2),
                "upper_bound": round(expected + margin, 2),
            }
        )

    annualized = _finite(lambda: (1 + avg) ** PERIODS_PER_YEAR[interval] - 1)
    return {
        "forecast": points,
        "avg_growth_rate": round(avg, 4),
        "annualized_roi": round(annualized, 4),
        "confidence_level": confidence,
        "metadata": {
            "forecast_method": "average_growth",
            "data_points_used": len(prices),
        },
    }
