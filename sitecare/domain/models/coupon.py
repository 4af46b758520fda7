from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(slots=True)
class CouponResult:
    valid: bool
    coupon_id: Optional[str] = None
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    duration: Optional[str] = None
    duration_in_months: Optional[int] = None
    name: Optional[str] = None
    error: Optional[str] = None

    def discount_summary(self, code: str) -> Dict[str, Any]:
        """Discount metadata stored on the subscription and echoed to the client."""
        return {
            "couponCode": code,
            "percentOff": self.percent_off,
            "amountOff": self.amount_off / 100 if self.amount_off else None,
        }
