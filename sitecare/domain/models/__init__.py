"""Domain models for the SiteCare billing core."""

from .account import Account
from .coupon import CouponResult
from .reset_token import ResetToken
from .subscription import Subscription
from .user import User

__all__ = [
    "Account",
    "CouponResult",
    "ResetToken",
    "Subscription",
    "User",
]
