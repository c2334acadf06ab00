"""Value objects: self-validating domain primitives."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from discussion_gateway.domain.entities import TimeoutTier


@dataclass(frozen=True, slots=True)
class ModelAllowList:
    """Ordered set of accepted model-identifier prefixes.

    Matching is a case-sensitive ``str.startswith`` against each prefix, so
    ``gemma3:4b`` admits ``gemma3:4b`` and ``gemma3:4b-it-q4_K_M`` but not
    ``Gemma3:4b``.  Empty prefixes are refused because they would admit
    every model.
    """

    prefixes: tuple[str, ...]

    @classmethod
    def from_prefixes(cls, prefixes: Iterable[str]) -> ModelAllowList:
        """Validate and freeze a prefix collection, dropping duplicates."""
        cleaned: list[str] = []
        for prefix in prefixes:
            if not isinstance(prefix, str) or not prefix:
                raise ValueError(f"Invalid model prefix: {prefix!r}")
            if prefix not in cleaned:
                cleaned.append(prefix)
        if not cleaned:
            raise ValueError("The model allow-list must contain at least one prefix.")
        return cls(prefixes=tuple(cleaned))

    def matches(self, model: str | None) -> bool:
        if not model:
            return False
        return any(model.startswith(prefix) for prefix in self.prefixes)


@dataclass(frozen=True, slots=True)
class TimeoutTiers:
    """Per-attempt wall-clock ceilings in seconds."""

    short_s: float
    long_s: float

    def __post_init__(self) -> None:
        if self.short_s <= 0 or self.long_s <= 0:
            raise ValueError("Timeouts must be positive.")

    def seconds_for(self, tier: TimeoutTier) -> float:
        return self.short_s if tier is TimeoutTier.SHORT else self.long_s
