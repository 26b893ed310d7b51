# backend/tabbit/domain/models.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from tabbit.domain.currency import DEFAULT_CURRENCY


class ModelValidationError(ValueError):
    """Raised when an entity or snapshot fails basic validation."""


# Participant palette. The position of a color in this tuple is written into
# every compact share token, so reordering or inserting colors breaks links
# that were already handed out. Append-only; bump PALETTE_VERSION if it must
# ever change.
PALETTE_VERSION = 1
RABBIT_COLORS: Tuple[str, ...] = (
    "success",
    "info",
    "warning",
    "danger",
    "primary",
    "secondary",
)
FALLBACK_COLOR = "secondary"

# Tab fields a client may change through a partial update.
TAB_UPDATABLE_FIELDS = frozenset({"name", "tax_percent", "tip_percent", "currency_code"})


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_non_empty_str(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _optional_str(value: object, name: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise ModelValidationError(f"{name} must be a string or null")


@dataclass(frozen=True)
class Tab:
    """
    A bill-splitting session owned by one user.
    tax_percent / tip_percent are signed percentages with no upper clamp.
    """
    id: str
    name: str
    tax_percent: float = 0
    tip_percent: float = 0
    currency_code: str = DEFAULT_CURRENCY
    owner_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not _is_non_empty_str(self.id):
            raise ModelValidationError("Tab.id must be a non-empty string")
        if not isinstance(self.name, str):
            raise ModelValidationError("Tab.name must be a string")
        if not _is_number(self.tax_percent):
            raise ModelValidationError("Tab.tax_percent must be a number")
        if not _is_number(self.tip_percent):
            raise ModelValidationError("Tab.tip_percent must be a number")
        if not _is_non_empty_str(self.currency_code):
            raise ModelValidationError("Tab.currency_code must be a non-empty string")


@dataclass(frozen=True)
class Item:
    """
    One priced line on the bill. price_cents is in the tab currency's
    smallest unit (raw value for zero-decimal currencies).
    """
    id: str
    description: str
    price_cents: int
    tab_id: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not _is_non_empty_str(self.id):
            raise ModelValidationError("Item.id must be a non-empty string")
        if not isinstance(self.description, str):
            raise ModelValidationError("Item.description must be a string")
        if not isinstance(self.price_cents, int) or isinstance(self.price_cents, bool) or self.price_cents < 0:
            raise ModelValidationError("Item.price_cents must be an int >= 0")


@dataclass(frozen=True)
class Rabbit:
    """A participant sharing the bill."""
    id: str
    name: str
    color: str = FALLBACK_COLOR
    tab_id: str = ""
    profile_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not _is_non_empty_str(self.id):
            raise ModelValidationError("Rabbit.id must be a non-empty string")
        if not isinstance(self.name, str):
            raise ModelValidationError("Rabbit.name must be a string")
        if self.color not in RABBIT_COLORS:
            raise ModelValidationError(f"Rabbit.color must be one of {', '.join(RABBIT_COLORS)}")


@dataclass(frozen=True)
class Assignment:
    """Edge stating that a rabbit owes a share of an item."""
    item_id: str
    rabbit_id: str

    def __post_init__(self) -> None:
        if not _is_non_empty_str(self.item_id):
            raise ModelValidationError("Assignment.item_id must be a non-empty string")
        if not _is_non_empty_str(self.rabbit_id):
            raise ModelValidationError("Assignment.rabbit_id must be a non-empty string")


@dataclass(frozen=True)
class Profile:
    """Payment identity for a participant or the bill owner."""
    display_name: Optional[str] = None
    venmo_username: Optional[str] = None
    cashapp_cashtag: Optional[str] = None
    paypal_username: Optional[str] = None
    currency_code: str = DEFAULT_CURRENCY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_name": self.display_name,
            "venmo_username": self.venmo_username,
            "cashapp_cashtag": self.cashapp_cashtag,
            "paypal_username": self.paypal_username,
            "currency_code": self.currency_code,
        }

    @classmethod
    def from_dict(cls, raw: object) -> "Profile":
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ModelValidationError("profile must be an object")
        currency_code = raw.get("currency_code") or DEFAULT_CURRENCY
        if not isinstance(currency_code, str):
            raise ModelValidationError("profile.currency_code must be a string")
        return cls(
            display_name=_optional_str(raw.get("display_name"), "profile.display_name"),
            venmo_username=_optional_str(raw.get("venmo_username"), "profile.venmo_username"),
            cashapp_cashtag=_optional_str(raw.get("cashapp_cashtag"), "profile.cashapp_cashtag"),
            paypal_username=_optional_str(raw.get("paypal_username"), "profile.paypal_username"),
            currency_code=currency_code,
        )


@dataclass(frozen=True)
class TabSnapshot:
    """Full state of one tab as loaded from the relational store."""
    tab: Tab
    items: Tuple[Item, ...] = ()
    rabbits: Tuple[Rabbit, ...] = ()
    assignments: Tuple[Assignment, ...] = ()


@dataclass(frozen=True)
class SharedTab:
    """The scalar tab fields a shared bill carries."""
    name: str
    tax_percent: float = 0
    tip_percent: float = 0
    currency_code: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise ModelValidationError("tab.name must be a string")
        if not _is_number(self.tax_percent):
            raise ModelValidationError("tab.tax_percent must be a number")
        if not _is_number(self.tip_percent):
            raise ModelValidationError("tab.tip_percent must be a number")
        if not _is_non_empty_str(self.currency_code):
            raise ModelValidationError("tab.currency_code must be a non-empty string")


@dataclass(frozen=True)
class SharedTabData:
    """
    Read-only denormalized snapshot of a bill for sharing. A value, not an
    entity: it is rebuilt from a compact token or a remote blob each time.

    The JSON shape (to_dict/from_dict) matches what web and mobile clients
    already post to /api/share, hence the camelCase "ownerProfile" key.
    """
    tab: SharedTab
    items: Tuple[Item, ...] = ()
    rabbits: Tuple[Rabbit, ...] = ()
    assignments: Tuple[Assignment, ...] = ()
    owner_profile: Profile = field(default_factory=Profile)

    @classmethod
    def from_snapshot(cls, snapshot: TabSnapshot, owner_profile: Optional[Profile] = None) -> "SharedTabData":
        tab = snapshot.tab
        return cls(
            tab=SharedTab(
                name=tab.name,
                tax_percent=tab.tax_percent,
                tip_percent=tab.tip_percent,
                currency_code=tab.currency_code,
            ),
            items=tuple(snapshot.items),
            rabbits=tuple(snapshot.rabbits),
            assignments=tuple(snapshot.assignments),
            owner_profile=owner_profile or Profile(currency_code=tab.currency_code),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tab": {
                "name": self.tab.name,
                "tax_percent": self.tab.tax_percent,
                "tip_percent": self.tab.tip_percent,
                "currency_code": self.tab.currency_code,
            },
            "items": [
                {"id": i.id, "description": i.description, "price_cents": i.price_cents}
                for i in self.items
            ],
            "rabbits": [
                {"id": r.id, "name": r.name, "color": r.color}
                for r in self.rabbits
            ],
            "assignments": [
                {"item_id": a.item_id, "rabbit_id": a.rabbit_id}
                for a in self.assignments
            ],
            "ownerProfile": self.owner_profile.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: object) -> "SharedTabData":
        """
        Build from the JSON shape. Raises ModelValidationError on anything
        structurally wrong; never returns a partially filled value.
        """
        if not isinstance(raw, dict):
            raise ModelValidationError("shared bill must be an object")

        raw_tab = raw.get("tab")
        if not isinstance(raw_tab, dict):
            raise ModelValidationError("'tab' must be an object")

        tab = SharedTab(
            name=raw_tab.get("name", ""),
            tax_percent=raw_tab.get("tax_percent", 0),
            tip_percent=raw_tab.get("tip_percent", 0),
            currency_code=raw_tab.get("currency_code") or DEFAULT_CURRENCY,
        )

        items = [
            Item(id=_field(it, "id"), description=_field(it, "description"), price_cents=_field(it, "price_cents"))
            for it in _list(raw, "items")
        ]
        rabbits = [
            Rabbit(
                id=_field(r, "id"),
                name=_field(r, "name"),
                color=r.get("color") if r.get("color") in RABBIT_COLORS else FALLBACK_COLOR,
            )
            for r in _list(raw, "rabbits")
        ]
        assignments = [
            Assignment(item_id=_field(a, "item_id"), rabbit_id=_field(a, "rabbit_id"))
            for a in _list(raw, "assignments", required=False)
        ]

        return cls(
            tab=tab,
            items=tuple(items),
            rabbits=tuple(rabbits),
            assignments=tuple(assignments),
            owner_profile=Profile.from_dict(raw.get("ownerProfile", raw.get("owner_profile"))),
        )


def _list(raw: Dict[str, Any], key: str, *, required: bool = True) -> List[Dict[str, Any]]:
    value = raw.get(key)
    if value is None and not required:
        return []
    if not isinstance(value, list):
        raise ModelValidationError(f"'{key}' must be a list")
    for idx, entry in enumerate(value):
        if not isinstance(entry, dict):
            raise ModelValidationError(f"'{key}' entry at index {idx} must be an object")
    return value


def _field(entry: Dict[str, Any], key: str) -> Any:
    if key not in entry:
        raise ModelValidationError(f"missing field '{key}'")
    return entry[key]
