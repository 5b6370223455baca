"""
Pending action schema and wire format (SSOT).

A pending action is an intended ledger annotation produced by a vendor
processor: how to find the target transaction (MatchCriteria) and what to
write once found (a Mutation).

The JSON payload stored in the backlog keeps the producers' camelCase keys:

    {"type": "update", "match": {"expectedPayee": "Lyft", "expectedTotal": 1234},
     "note": "...", "markReviewed": false}

    {"type": "split", "match": {...},
     "split": [{"amount": 1000, "note": "...", "markReviewed": true}]}

Amount Convention (SSOT):
- Internally every amount is an int in minor units (cents)
- The ledger exchanges fixed-precision decimal strings; convert at the boundary
  with to_minor_units / from_minor_units and nowhere else
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Union

MINOR_UNIT_PLACES = 2


class InvalidActionPayload(ValueError):
    """Raised when a stored action payload cannot be decoded."""

    pass


def to_minor_units(value: str | Decimal | int) -> int:
    """Convert a decimal amount (e.g. "12.3400") to integer minor units.

    Raises:
        ValueError: If the value is not a number or has sub-cent precision
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e

    scaled = amount.scaleb(MINOR_UNIT_PLACES)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {value!r} has sub-cent precision")
    return int(scaled)


def from_minor_units(value: int, places: int = MINOR_UNIT_PLACES) -> str:
    """Convert integer minor units to a fixed-precision decimal string.

    >>> from_minor_units(1234)
    '12.34'
    >>> from_minor_units(1234, 4)
    '12.3400'
    """
    amount = Decimal(value).scaleb(-MINOR_UNIT_PLACES)
    return str(amount.quantize(Decimal(1).scaleb(-places)))


def _flag(data: dict[str, Any], key: str) -> bool:
    """Read an optional JSON boolean; absent means False."""
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise InvalidActionPayload(f"'{key}' must be a boolean, got {value!r}")
    return value


@dataclass(frozen=True)
class MatchCriteria:
    """Predicate used to locate the target transaction."""

    expected_payee: str
    expected_total: int  # minor units

    def to_dict(self) -> dict[str, Any]:
        return {"expectedPayee": self.expected_payee, "expectedTotal": self.expected_total}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatchCriteria:
        return cls(
            expected_payee=str(data["expectedPayee"]),
            expected_total=int(data["expectedTotal"]),
        )


@dataclass(frozen=True)
class UpdateMutation:
    """Single annotation on the matched transaction."""

    note: str
    mark_reviewed: bool = False


@dataclass(frozen=True)
class SplitLine:
    """One line of a split; amount in minor units."""

    amount: int
    note: str
    mark_reviewed: bool = False


@dataclass(frozen=True)
class SplitMutation:
    """Split the matched transaction into lines.

    The producer guarantees the line amounts sum to the match total.
    """

    items: tuple[SplitLine, ...]

    @property
    def total(self) -> int:
        return sum(item.amount for item in self.items)


Mutation = Union[UpdateMutation, SplitMutation]


@dataclass(frozen=True)
class ActionDraft:
    """What a vendor processor produces: match criteria plus mutation."""

    match: MatchCriteria
    mutation: Mutation

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored JSON payload shape."""
        data: dict[str, Any]
        if isinstance(self.mutation, SplitMutation):
            data = {
                "type": "split",
                "match": self.match.to_dict(),
                "split": [
                    {"amount": line.amount, "note": line.note, "markReviewed": line.mark_reviewed}
                    for line in self.mutation.items
                ],
            }
        else:
            data = {
                "type": "update",
                "match": self.match.to_dict(),
                "note": self.mutation.note,
                "markReviewed": self.mutation.mark_reviewed,
            }
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionDraft:
        """Parse a stored payload.

        Raises:
            InvalidActionPayload: On unknown type, missing fields, a non-boolean
                markReviewed or a split without lines
        """
        try:
            match = MatchCriteria.from_dict(data["match"])
            action_type = data.get("type")

            if action_type == "update":
                mutation: Mutation = UpdateMutation(
                    note=str(data["note"]),
                    mark_reviewed=_flag(data, "markReviewed"),
                )
            elif action_type == "split":
                items = tuple(
                    SplitLine(
                        amount=int(item["amount"]),
                        note=str(item["note"]),
                        mark_reviewed=_flag(item, "markReviewed"),
                    )
                    for item in data["split"]
                )
                if not items:
                    raise InvalidActionPayload("Split action has no lines")
                mutation = SplitMutation(items=items)
            else:
                raise InvalidActionPayload(f"Unknown action type: {action_type!r}")
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, InvalidActionPayload):
                raise
            raise InvalidActionPayload(f"Malformed action payload: {e}") from e

        return cls(match=match, mutation=mutation)

    @classmethod
    def from_json(cls, payload: str) -> ActionDraft:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidActionPayload(f"Action payload is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidActionPayload("Action payload must be a JSON object")
        return cls.from_dict(data)


@dataclass(frozen=True)
class PendingAction:
    """A backlog entry awaiting a ledger match."""

    id: int
    created_at: datetime
    source: str
    match: MatchCriteria
    mutation: Mutation
    notified_stale: bool = False

    @property
    def label(self) -> str:
        """Human label for the mutation kind."""
        return "Split" if isinstance(self.mutation, SplitMutation) else "Update"
