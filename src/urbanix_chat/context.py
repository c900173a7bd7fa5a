from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

ASSISTANT_PERSONA = (
    "You are URBANIX AI Assistant, an expert in urban planning and liveability analytics. "
    "Answer the user's question concisely and helpfully. "
    "Focus on urban planning, sustainability, and city design."
)

NO_DATA_NOTE = "\n\nNote: User has not yet imported urban data."


@dataclass(frozen=True)
class DistrictIndicators:
    air_quality: float
    health_score: float
    mobility_efficiency: float
    green_space_access: float
    population_density: float

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "DistrictIndicators":
        """Accepts the dashboard's camelCase keys as well as snake_case ones."""

        def pick(*keys: str) -> float:
            for key in keys:
                value = row.get(key)
                if value is not None and value != "":
                    return float(value)
            return 0.0

        return cls(
            air_quality=pick("airQuality", "air_quality"),
            health_score=pick("healthScore", "health_score"),
            mobility_efficiency=pick("mobilityEfficiency", "mobility_efficiency"),
            green_space_access=pick("greenSpaceAccess", "green_space_access"),
            population_density=pick("populationDensity", "population_density"),
        )


def _coerce(districts: Iterable[DistrictIndicators | Mapping[str, Any]]) -> list[DistrictIndicators]:
    return [d if isinstance(d, DistrictIndicators) else DistrictIndicators.from_mapping(d) for d in districts]


def summarize_districts(districts: Iterable[DistrictIndicators | Mapping[str, Any]] | None) -> str:
    rows = _coerce(districts or [])
    if not rows:
        return NO_DATA_NOTE

    n = len(rows)

    def avg(attr: str) -> float:
        return sum(getattr(r, attr) for r in rows) / n

    return (
        "\n\nCurrent Urban Data Context:"
        f"\n- Number of districts: {n}"
        f"\n- Average Air Quality Score: {avg('air_quality'):.2f}"
        f"\n- Average Health Score: {avg('health_score'):.2f}"
        f"\n- Average Mobility Efficiency: {avg('mobility_efficiency'):.2f}"
        f"\n- Average Green Space Access: {avg('green_space_access'):.2f}"
        f"\n- Average Population Density: {avg('population_density'):.0f} per sq km"
    )


def build_prompt(message: str, context: str = "") -> str:
    return f"{ASSISTANT_PERSONA}{context}\n\nUser: {message}\nAssistant:"
