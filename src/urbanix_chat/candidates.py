from __future__ import annotations

from collections.abc import Iterable


def dedupe_models(models: Iterable[str | None]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for model in models:
        name = (model or "").strip()
        if not name or name in seen:
            continue
        seen.add(name)
        out.append(name)
    return tuple(out)


def build_candidate_list(primary: str | None, fallbacks: Iterable[str]) -> tuple[str, ...]:
    """Primary model first, then the configured fallbacks, first occurrence wins."""
    return dedupe_models([primary, *fallbacks])
