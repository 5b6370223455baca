"""
SSOT (Single Source of Truth) schemas for the reconciler.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .actions import (
    MINOR_UNIT_PLACES,
    ActionDraft,
    InvalidActionPayload,
    MatchCriteria,
    Mutation,
    PendingAction,
    SplitLine,
    SplitMutation,
    UpdateMutation,
    from_minor_units,
    to_minor_units,
)
from .allocation import (
    ALLOCATION_ROUNDING,
    InvalidTotal,
    allocate,
    item_charges,
)

__all__ = [
    # Actions
    "MINOR_UNIT_PLACES",
    "ActionDraft",
    "InvalidActionPayload",
    "MatchCriteria",
    "Mutation",
    "PendingAction",
    "SplitLine",
    "SplitMutation",
    "UpdateMutation",
    "from_minor_units",
    "to_minor_units",
    # Allocation
    "ALLOCATION_ROUNDING",
    "InvalidTotal",
    "allocate",
    "item_charges",
]
