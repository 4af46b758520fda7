"""Decision table for reactivating a subscription.

The branch is chosen from what Stripe reports, not from the local record,
which may be stale. The table performs no I/O.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class ReactivationAction(str, enum.Enum):
    UNDO_CANCEL_AND_SWAP = "undo_cancel_and_swap"
    CREATE_FRESH = "create_fresh"
    PLAIN_SWAP = "plain_swap"
    ERROR_NO_CUSTOMER = "error_no_customer"


@dataclass(frozen=True, slots=True)
class ReactivationState:
    has_local_ref: bool
    provider_exists: bool
    flagged_for_cancel: bool
    fully_canceled: bool
    has_customer: bool


def decide_reactivation(state: ReactivationState) -> ReactivationAction:
    if state.has_local_ref and state.provider_exists:
        if state.flagged_for_cancel and not state.fully_canceled:
            return ReactivationAction.UNDO_CANCEL_AND_SWAP
        if state.fully_canceled:
            # The provider subscription carries its own customer.
            return ReactivationAction.CREATE_FRESH
        return ReactivationAction.PLAIN_SWAP
    if not state.has_customer:
        return ReactivationAction.ERROR_NO_CUSTOMER
    return ReactivationAction.CREATE_FRESH
