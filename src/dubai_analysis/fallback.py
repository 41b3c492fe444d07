"""Deterministic placeholder data served when the provider cannot answer."""

from __future__ import annotations

import hashlib
import random
from datetime import datetime, timezone
from typing import Any


def _seeded(*parts: str) -> random.Random:
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return random.Random(int(digest[:16], 16))


def generate_revenue_data(current_year: int, rng: random.Random) -> list[dict[str, int]]:
    rows = []
    for offset in range(4, -1, -1):
        base = 1000 + rng.random() * 500  # million AED
        rows.append(
            {
                "year": current_year - offset,
                "residential": int(base * 0.6 * (1 + rng.random() * 0.3)),
                "commercial": int(base * 0.25 * (1 + rng.random() * 0.4)),
                "mixedUse": int(base * 0.15 * (1 + rng.random() * 0.5)),
            }
        )
    return rows


def generate_fallback_property_data(
    name: str,
    area: str,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    rng = rng or _seeded(name.lower(), area.lower())
    year = now.year

    base_price = 1000 + rng.random() * 500  # AED per sqft
    history = []
    for offset in range(5, -1, -1):
        growth = 0.08 * (0.8 + rng.random() * 0.4)
        history.append({"year": year - offset, "price": int(base_price * (1 + growth * (5 - offset)))})

    current = history[-1]["price"]
    return {
        "metadata": {
            "id": f"fallback-{_seeded(name, area).getrandbits(32):08x}",
            "name": name,
            "beds": rng.randint(1, 4),
            "baths": rng.randint(1, 3),
            "sqft": rng.randint(800, 1799),
            "developer": "Premium Developer",
            "purchaseYear": year - rng.randint(0, 4),
            "location": area,
            "status": "Completed",
            "coordinates": {
                "lat": round(25.0657 + (rng.random() - 0.5) * 0.1, 6),
                "lng": round(55.1713 + (rng.random() - 0.5) * 0.1, 6),
            },
        },
        "priceHistory": history,
        "nearby": [],
        "ongoingProjects": [],
        "developer": {
            "id": "fallback-dev",
            "name": "Premium Developer",
            "headquarters": "Dubai, UAE",
            "totalProjects": 45,
            "averageROI": 9.8,
            "revenueByYear": generate_revenue_data(year, rng),
        },
        "marketAnalysis": {
            "currentValue": current,
            "averagePrice": current,
            "priceChange": 5.2,
            "marketActivity": "Moderate",
            "roi": 8.5,
            "appreciation": 6.8,
            "confidence": 0.7,
        },
        "transactions": [],
        "dldData": {
            "totalTransactions": 0,
            "averageRent": 0,
            "averagePrice": 0,
            "activeProjects": 0,
            "lastUpdated": now.isoformat(),
            "dataSource": "Fallback Data",
        },
    }
