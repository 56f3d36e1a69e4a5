"""24-bit RGB colour value used by layers, categories and per-key overrides."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RgbColor:
    """RGB colour with 8-bit channels.

    Parameters
    ----------
    r, g, b : int
        Channel values in ``[0, 255]``.
    """

    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {value!r}")
            if not 0 <= value <= 255:
                raise ValueError(f"{name} must be in [0, 255], got {value}")

    @classmethod
    def from_hex(cls, text: str) -> RgbColor:
        """Parse ``#RRGGBB`` or ``RRGGBB`` (case-insensitive)."""
        digits = text.strip().removeprefix("#")
        if len(digits) != 6:
            raise ValueError(f"Hex colour must have 6 digits, got {text!r}")
        try:
            return cls(int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16))
        except ValueError as e:
            raise ValueError(f"Invalid hex colour {text!r}") from e

    def to_hex(self) -> str:
        """Format as uppercase ``#RRGGBB``."""
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    def dim(self, percent: int) -> RgbColor:
        """Scale every channel to ``percent`` of its value (integer math)."""
        if not 0 <= percent <= 100:
            raise ValueError(f"percent must be in [0, 100], got {percent}")
        return RgbColor(
            self.r * percent // 100,
            self.g * percent // 100,
            self.b * percent // 100,
        )

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def __str__(self) -> str:
        return self.to_hex()
