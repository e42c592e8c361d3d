"""Exact currency amounts held as integer minor units."""

import logging
from decimal import ROUND_HALF_UP, Decimal, DecimalException, InvalidOperation
from functools import total_ordering

from pydantic import BaseModel, ConfigDict

from .exceptions import InvalidAmountError

logger = logging.getLogger(__name__)

MINOR_UNITS_PER_UNIT = 100


def to_minor_units(amount: Decimal) -> int:
    """
    Convert Decimal currency units to integer minor units (cents).
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Amount in currency units as Decimal

    Returns:
        Amount in minor units (integer)
    """
    minor = amount * MINOR_UNITS_PER_UNIT
    return int(minor.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@total_ordering
class Money(BaseModel):
    """
    A signed currency amount.

    All arithmetic happens on ``minor_units`` so sums, differences and splits
    never drift. Decimal values only appear at the boundary
    (``of``/``parse`` in, ``to_decimal``/``to_display_string`` out).
    """

    model_config = ConfigDict(frozen=True)

    minor_units: int = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zero(cls) -> "Money":
        return cls(minor_units=0)

    @classmethod
    def of(cls, amount: Decimal | int | str) -> "Money":
        """Build from a trusted decimal value, e.g. ``Money.of("10.00")``."""
        return cls(minor_units=to_minor_units(Decimal(amount)))

    @classmethod
    def parse(cls, raw: object, maximum: "Money | None" = None) -> "Money":
        """
        Build a positive amount from untrusted input.

        Args:
            raw: User-supplied value (string, number or Decimal)
            maximum: Optional inclusive upper bound

        Returns:
            The parsed amount, rounded half-up to whole minor units

        Raises:
            InvalidAmountError: If the input is non-numeric, not greater
                than zero, or above ``maximum``
        """
        if isinstance(raw, bool) or raw is None:
            raise InvalidAmountError(raw, "not a number")

        try:
            if isinstance(raw, float):
                value = Decimal(str(raw))
            elif isinstance(raw, str):
                value = Decimal(raw.strip().replace(",", ""))
            else:
                value = Decimal(raw)  # type: ignore[arg-type]
        except (InvalidOperation, TypeError, ValueError) as e:
            raise InvalidAmountError(raw, "not a number") from e

        if not value.is_finite():
            raise InvalidAmountError(raw, "not a finite number")

        exponent = value.as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            logger.warning(f"Amount {value} has more than 2 decimal places, rounding")

        try:
            amount = cls(minor_units=to_minor_units(value))
        except DecimalException as e:
            raise InvalidAmountError(raw, "too large to represent") from e
        if amount.minor_units <= 0:
            raise InvalidAmountError(raw, "must be greater than zero")
        if maximum is not None and amount > maximum:
            raise InvalidAmountError(
                raw, f"exceeds the maximum of {maximum.to_display_string()}"
            )

        return amount

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: "Money") -> "Money":
        return Money(minor_units=self.minor_units + other.minor_units)

    def subtract(self, other: "Money") -> "Money":
        return Money(minor_units=self.minor_units - other.minor_units)

    def negate(self) -> "Money":
        return Money(minor_units=-self.minor_units)

    def is_zero(self) -> bool:
        return self.minor_units == 0

    def is_positive(self) -> bool:
        return self.minor_units > 0

    def is_negative(self) -> bool:
        return self.minor_units < 0

    def compare(self, other: "Money") -> int:
        """Return -1, 0 or 1 comparing this amount to ``other``."""
        return (self.minor_units > other.minor_units) - (
            self.minor_units < other.minor_units
        )

    def __abs__(self) -> "Money":
        return Money(minor_units=abs(self.minor_units))

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __radd__(self, other: object) -> "Money":
        # Lets the builtin sum() start from 0
        if other == 0:
            return self
        if isinstance(other, Money):
            return other.add(self)
        return NotImplemented

    def __sub__(self, other: "Money") -> "Money":
        return self.subtract(other)

    def __neg__(self) -> "Money":
        return self.negate()

    def __lt__(self, other: "Money") -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.minor_units < other.minor_units

    def split_evenly(self, n: int) -> list["Money"]:
        """
        Split into ``n`` shares that sum exactly to this amount.

        Uses the largest-remainder method: every share gets the floor of the
        even split, then the leftover minor units go one each to the first
        shares. Splitting 10.00 three ways yields 3.34, 3.33, 3.33.

        Args:
            n: Number of shares (at least 1)

        Returns:
            List of ``n`` amounts, largest first
        """
        if n < 1:
            raise ValueError(f"Cannot split into {n} shares")

        base, remainder = divmod(self.minor_units, n)
        return [
            Money(minor_units=base + 1 if i < remainder else base) for i in range(n)
        ]

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    def to_decimal(self) -> Decimal:
        return Decimal(self.minor_units) / MINOR_UNITS_PER_UNIT

    def to_display_string(self, symbol: str = "$") -> str:
        """Format as ``$1,234.56`` or ``-$10.00``."""
        units, cents = divmod(abs(self.minor_units), MINOR_UNITS_PER_UNIT)
        sign = "-" if self.minor_units < 0 else ""
        return f"{sign}{symbol}{units:,}.{cents:02d}"

    def __str__(self) -> str:
        return self.to_display_string()
