from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import ChargeFrequency, PaydayFrequency, ResetFrequency


# Remote ledger payloads (JSON:API resources).


class RemoteModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RemoteMoney(RemoteModel):
    currency_code: str = Field(default="AUD", alias="currencyCode")
    value: Optional[str] = None
    value_in_base_units: int = Field(default=0, alias="valueInBaseUnits")


class ResourceRef(RemoteModel):
    id: str
    type: Optional[str] = None


class Relationship(RemoteModel):
    data: Optional[ResourceRef] = None


def _related_id(rel: Optional[Relationship]) -> Optional[str]:
    if rel is None or rel.data is None:
        return None
    return rel.data.id


class RemoteAccountAttributes(RemoteModel):
    display_name: str = Field(default="", alias="displayName")
    account_type: str = Field(default="TRANSACTIONAL", alias="accountType")
    balance: Optional[RemoteMoney] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class RemoteAccount(RemoteModel):
    id: str
    attributes: RemoteAccountAttributes = Field(default_factory=RemoteAccountAttributes)

    @property
    def balance_cents(self) -> int:
        balance = self.attributes.balance
        return balance.value_in_base_units if balance else 0


class RemoteRoundUp(RemoteModel):
    amount: Optional[RemoteMoney] = None
    boost_portion: Optional[RemoteMoney] = Field(default=None, alias="boostPortion")


class RemoteTransactionAttributes(RemoteModel):
    status: str = "SETTLED"
    raw_text: Optional[str] = Field(default=None, alias="rawText")
    description: str = ""
    message: Optional[str] = None
    is_categorizable: bool = Field(default=True, alias="isCategorizable")
    round_up: Optional[RemoteRoundUp] = Field(default=None, alias="roundUp")
    amount: Optional[RemoteMoney] = None
    settled_at: Optional[datetime] = Field(default=None, alias="settledAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class RemoteTransactionRelationships(RemoteModel):
    account: Optional[Relationship] = None
    category: Optional[Relationship] = None
    parent_category: Optional[Relationship] = Field(default=None, alias="parentCategory")
    transfer_account: Optional[Relationship] = Field(
        default=None, alias="transferAccount"
    )


class RemoteTransaction(RemoteModel):
    id: str
    attributes: RemoteTransactionAttributes = Field(
        default_factory=RemoteTransactionAttributes
    )
    relationships: RemoteTransactionRelationships = Field(
        default_factory=RemoteTransactionRelationships
    )

    @property
    def amount_cents(self) -> int:
        amount = self.attributes.amount
        return amount.value_in_base_units if amount else 0

    @property
    def account_id(self) -> str:
        return _related_id(self.relationships.account) or ""

    @property
    def category_id(self) -> Optional[str]:
        return _related_id(self.relationships.category)

    @property
    def parent_category_id(self) -> Optional[str]:
        return _related_id(self.relationships.parent_category)

    @property
    def transfer_account_id(self) -> Optional[str]:
        return _related_id(self.relationships.transfer_account)


class RemoteCategoryAttributes(RemoteModel):
    name: Optional[str] = None


class RemoteCategoryRelationships(RemoteModel):
    parent: Optional[Relationship] = None


class RemoteCategory(RemoteModel):
    id: str
    attributes: RemoteCategoryAttributes = Field(default_factory=RemoteCategoryAttributes)
    relationships: RemoteCategoryRelationships = Field(
        default_factory=RemoteCategoryRelationships
    )

    @property
    def parent_id(self) -> Optional[str]:
        return _related_id(self.relationships.parent)


# Local inputs.


class TrackerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    budget_cents: int = Field(..., ge=0)
    reset_frequency: ResetFrequency
    reset_day: Optional[int] = None
    category_ids: list[str] = Field(default_factory=list)


class ScheduledChargeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    frequency: ChargeFrequency
    next_charge_date: date
    category_id: Optional[str] = None
    is_reserved: bool = True


class SaverGoalsIn(BaseModel):
    goal_amount_cents: Optional[int] = Field(default=None, ge=0)
    target_date: Optional[date] = None
    monthly_transfer_cents: Optional[int] = Field(default=None, ge=0)


class PaydaySettingsIn(BaseModel):
    frequency: PaydayFrequency
    day: int = Field(..., ge=1, le=28)
    next_payday: date


class SyncRequest(BaseModel):
    token: Optional[str] = Field(default=None, min_length=1)
    full: bool = False


class TokenIn(BaseModel):
    token: str = Field(..., min_length=1)
