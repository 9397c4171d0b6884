"""
Price Table — static SOL price per session kind, optional one-off discount.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from paygate.models.enums import SessionKind
from paygate.services.ledger import SOL_QUANTUM


@dataclass(frozen=True)
class PriceTable:
    individual: Decimal
    group: Decimal
    referral_discount_percent: Decimal = Decimal(0)

    def base_amount(self, kind: SessionKind) -> Decimal:
        return self.group if kind == SessionKind.GROUP else self.individual

    def quote(
        self,
        kind: SessionKind,
        price_override: Optional[Decimal] = None,
        discount_percent: Optional[Decimal] = None,
    ) -> Tuple[Decimal, Decimal, Decimal]:
        """Return (base, discount %, expected amount) for a new session.

        The discount is applied exactly once here; the result is rounded to
        whole lamports and frozen into the session.
        """
        base = Decimal(price_override) if price_override is not None else self.base_amount(kind)
        discount = Decimal(discount_percent) if discount_percent is not None else Decimal(0)

        if base <= 0:
            raise ValueError(f"Price must be positive, got {base}")
        if not (0 <= discount < 100):
            raise ValueError(f"Discount must be in [0, 100), got {discount}")

        expected = (base * (Decimal(100) - discount) / Decimal(100)).quantize(SOL_QUANTUM, rounding=ROUND_HALF_UP)
        return base, discount, expected
