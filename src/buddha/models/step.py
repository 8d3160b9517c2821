"""Treatment step model."""

from __future__ import annotations

from dataclasses import dataclass

# Rev F step domain (inclusive)
AMPLITUDE_MIN = 0
AMPLITUDE_MAX = 100
DURATION_MIN_MS = 1
DURATION_MAX_MS = 0xFFFF

# Rev F step list characteristic holds at most 40 records
MAX_STEPS = 40


@dataclass(frozen=True, slots=True)
class Step:
    """One timed, amplitude-scaled segment of a treatment.

    No range checks happen here: values decoded from the device are kept
    as-is. Range checks run when a step list is packed for writing.
    """

    amplitude_pct: int
    duration_ms: int

    def to_dict(self) -> dict[str, int]:
        """Serialize to a JSON-compatible dict."""
        return {"amplitude_pct": self.amplitude_pct, "duration_ms": self.duration_ms}

    @classmethod
    def parse(cls, text: str) -> Step:
        """Parse an ``AMP:MS`` pair, e.g. ``"50:1000"``.

        Raises:
            ValueError: If text is not two colon-separated integers
        """
        amplitude, sep, duration = text.partition(":")
        if not sep:
            raise ValueError(f"step must be AMP:MS, got {text!r}")
        return cls(amplitude_pct=int(amplitude), duration_ms=int(duration))
