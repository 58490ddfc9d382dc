"""Pydantic domain models for HouseholdSplit."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

ZERO = Decimal("0")
WHOLE_UNIT = Decimal("1")

# Values at or beyond 10**AMOUNT_DIGITS_LIMIT are treated as unusable
AMOUNT_DIGITS_LIMIT = 60
WORKING_PRECISION = 2 * AMOUNT_DIGITS_LIMIT + 2


def to_decimal(value: Any) -> Decimal:
    """
    Coerce a stored amount or ratio into a Decimal.

    Missing, boolean, non-numeric, non-finite and absurdly large values
    become zero so arithmetic downstream never raises.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite() or result.adjusted() >= AMOUNT_DIGITS_LIMIT:
        return ZERO
    return result


def round_whole(value: Decimal, rounding: str) -> Decimal:
    """Round a usable value to whole currency units without overflowing."""
    with localcontext(prec=WORKING_PRECISION):
        return to_decimal(value).quantize(WHOLE_UNIT, rounding=rounding)


def _number(value: Decimal) -> int | float:
    """Render a Decimal as the plain JSON number stored in documents."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# ============================================================================
# Identity Models
# ============================================================================


class Identity(BaseModel):
    """The signed-in party as supplied by the identity provider."""

    uid: str = ""
    email: str = ""
    display_name: str = ""


# ============================================================================
# Expense Models
# ============================================================================


class SplitEntry(BaseModel):
    """One (identifier, ratio) pair of an expense split."""

    model_config = ConfigDict(populate_by_name=True)

    uid_or_email: str = Field(default="", alias="uidOrEmail")
    ratio: Decimal = ZERO

    @field_validator("uid_or_email", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("ratio", mode="before")
    @classmethod
    def _coerce_ratio(cls, value: Any) -> Decimal:
        return to_decimal(value)

    @field_serializer("ratio")
    def _serialize_ratio(self, value: Decimal) -> int | float:
        return _number(value)


class ExpenseRecord(BaseModel):
    """
    A shared expense as persisted in the store.

    Field aliases are the stored document keys and must not change:
    date, weekLabel, description, category, costCenter, amount, conciliado,
    payerUid, split, householdId, createdBy, createdAt, updatedAt.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    date: str
    week_label: str = Field(default="", alias="weekLabel")
    description: str = ""
    category: str = "General"
    cost_center: str = Field(default="Shared", alias="costCenter")
    amount: Decimal = ZERO
    conciliado: bool = False
    payer_uid: str = Field(default="", alias="payerUid")
    split: list[SplitEntry] = Field(default_factory=list)
    household_id: str = Field(default="", alias="householdId")
    created_by: str = Field(default="", alias="createdBy")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> str:
        if isinstance(value, date):
            return value.isoformat()
        return "" if value is None else str(value)

    @field_validator(
        "week_label",
        "description",
        "category",
        "cost_center",
        "payer_uid",
        "household_id",
        "created_by",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Decimal:
        return to_decimal(value)

    @field_validator("split", mode="before")
    @classmethod
    def _coerce_split(cls, value: Any) -> list:
        return value or []

    @field_validator("conciliado", mode="before")
    @classmethod
    def _coerce_flag(cls, value: Any) -> bool:
        return bool(value)

    @field_serializer("amount")
    def _serialize_amount(self, value: Decimal) -> int | float:
        return _number(value)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored document shape (aliased keys, no id)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


# ============================================================================
# Output Models
# ============================================================================


class PartyTotals(BaseModel):
    """Aggregated totals for one party."""

    gasto: Decimal = ZERO  # share of cost attributed to the party
    aporto: Decimal = ZERO  # amount actually paid by the party
    balance: Decimal = ZERO  # aporto - gasto; positive = owed money


class BalanceSummary(BaseModel):
    """Per-person balance summary for the household."""

    you: PartyTotals = Field(default_factory=PartyTotals)
    partner: PartyTotals = Field(default_factory=PartyTotals)
    partner_keys: frozenset[str] = frozenset()


# ============================================================================
# Internal Models
# ============================================================================


class RatioResolution(BaseModel):
    """Raw ratio sums for one party within a split."""

    party_ratio: Decimal = ZERO
    total_ratio_seen: Decimal = ZERO


class SettlementFilter(str, Enum):
    """Which settlement states the expense view includes."""

    ALL = "all"
    SETTLED = "settled"
    PENDING = "pending"


class FilterState(BaseModel):
    """UI filter state applied to the expense snapshot."""

    this_month: bool = False
    settlement: SettlementFilter = SettlementFilter.PENDING
    query: str = ""


class ExpenseInput(BaseModel):
    """Raw values entered for a new or edited expense, before validation."""

    date: str = Field(default_factory=lambda: date.today().isoformat())
    description: str = ""
    category: str = "General"
    cost_center: str = "Shared"
    amount: str | int | float | Decimal | None = None
    conciliado: bool = False
    payer: str = ""  # member key; empty means the signed-in party
    your_ratio: Decimal = Decimal("0.5")
