"""Tick and digit-history models."""

import math
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field


def extract_digit(quote: float | str | Decimal) -> int:
    """Reduce a quote to its trading digit.

    digit = floor((quote * 10^4) mod 10). Computed on the decimal text of
    the quote so that binary float error cannot shift the result.

    Raises:
        ValueError: If the quote is not a finite number.
    """
    try:
        value = Decimal(str(quote))
    except InvalidOperation as e:
        raise ValueError(f"Invalid quote: {quote!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid quote: {quote!r}")
    return int(abs(value) * 10000 % 10)


class Tick(BaseModel):
    """A single upstream price tick."""

    model_config = ConfigDict(frozen=True)

    market: str
    quote: float
    epoch: int = 0  # Server timestamp, seconds

    @property
    def digit(self) -> int:
        return extract_digit(self.quote)

    @classmethod
    def from_message(cls, data: dict, market: str | None = None) -> "Tick":
        """Build a Tick from an upstream ``tick`` payload.

        ``market`` is used when the payload carries no symbol.
        """
        tick = data["tick"]
        quote = tick["quote"]
        if isinstance(quote, (int, float)) and not math.isfinite(quote):
            raise ValueError(f"Invalid quote: {quote!r}")
        return cls(
            market=tick.get("symbol") or market,
            quote=quote,
            epoch=int(tick.get("epoch", 0)),
        )


class DigitHistory(BaseModel):
    """Bounded per-market buffer of recent digits, oldest first."""

    market: str
    digits: list[int] = Field(default_factory=list)
    max_size: int = 1000

    def add(self, digit: int) -> None:
        """Append a digit, evicting the oldest past max_size."""
        if not 0 <= digit <= 9:
            raise ValueError(f"Digit out of range: {digit}")
        self.digits.append(digit)
        if len(self.digits) > self.max_size:
            self.digits = self.digits[-self.max_size :]

    def last(self, n: int) -> list[int]:
        """Return the most recent n digits (fewer if not yet available)."""
        if n <= 0:
            return []
        return self.digits[-n:]

    def clear(self) -> None:
        self.digits = []

    def __len__(self) -> int:
        return len(self.digits)
