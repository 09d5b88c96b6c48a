from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    transactional = "TRANSACTIONAL"
    saver = "SAVER"


class TransactionStatus(str, Enum):
    held = "HELD"
    settled = "SETTLED"


class ChargeFrequency(str, Enum):
    weekly = "WEEKLY"
    fortnightly = "FORTNIGHTLY"
    monthly = "MONTHLY"
    quarterly = "QUARTERLY"
    yearly = "YEARLY"
    once = "ONCE"


class ResetFrequency(str, Enum):
    weekly = "WEEKLY"
    fortnightly = "FORTNIGHTLY"
    monthly = "MONTHLY"
    payday = "PAYDAY"


class PaydayFrequency(str, Enum):
    weekly = "WEEKLY"
    fortnightly = "FORTNIGHTLY"
    monthly = "MONTHLY"


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


ACCOUNT_TYPE_ENUM = _value_enum(AccountType, "accounttype")
TRANSACTION_STATUS_ENUM = _value_enum(TransactionStatus, "transactionstatus")
CHARGE_FREQUENCY_ENUM = _value_enum(ChargeFrequency, "chargefrequency")
RESET_FREQUENCY_ENUM = _value_enum(ResetFrequency, "resetfrequency")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


# Remote-owned rows. Keyed by the remote identifier and overwritten on every
# sync, so no foreign keys between them: transactions arrive before the
# categories phase runs.


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(
        ACCOUNT_TYPE_ENUM, nullable=False
    )
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    parent_id: Mapped[Optional[str]] = mapped_column(String(64))


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        TRANSACTION_STATUS_ENUM, nullable=False
    )
    raw_text: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message: Mapped[Optional[str]] = mapped_column(Text)
    is_categorizable: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    parent_category_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="AUD")
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    display_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_round_up: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    round_up_parent_id: Mapped[Optional[str]] = mapped_column(String(64))
    transfer_account_id: Mapped[Optional[str]] = mapped_column(String(64))
    transfer_type: Mapped[Optional[str]] = mapped_column(String(40))
    synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_transactions_display_date", "display_date"),
        Index("ix_transactions_category_date", "category_id", "display_date"),
        Index("ix_transactions_account", "account_id"),
        Index("ix_transactions_transfer_account", "transfer_account_id"),
    )


# Locally-owned rows.


class Saver(Base, TimestampMixin):
    __tablename__ = "savers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(40))
    current_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    goal_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    monthly_transfer_cents: Mapped[Optional[int]] = mapped_column(Integer)
    auto_transfer_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_goal_based: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class ScheduledCharge(Base, TimestampMixin):
    __tablename__ = "scheduled_charges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[ChargeFrequency] = mapped_column(
        CHARGE_FREQUENCY_ENUM, nullable=False
    )
    next_charge_date: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[Optional[str]] = mapped_column(String(64))
    is_reserved: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_charge_amount_positive"),
        Index("ix_scheduled_charges_next_date", "next_charge_date"),
    )


tracker_categories = Table(
    "tracker_categories",
    Base.metadata,
    Column(
        "tracker_id",
        Integer,
        ForeignKey("trackers.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("category_id", String(64), primary_key=True),
)


class Tracker(Base, TimestampMixin):
    __tablename__ = "trackers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    budget_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_frequency: Mapped[ResetFrequency] = mapped_column(
        RESET_FREQUENCY_ENUM, nullable=False
    )
    reset_day: Mapped[Optional[int]] = mapped_column(Integer)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    category_links: Mapped[list["TrackerCategory"]] = relationship(
        "TrackerCategory", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def category_ids(self) -> list[str]:
        return sorted(link.category_id for link in self.category_links)

    __table_args__ = (
        CheckConstraint("budget_cents >= 0", name="ck_tracker_budget_positive"),
        Index("ix_trackers_active", "is_active"),
    )


class TrackerCategory(Base):
    __table__ = tracker_categories


class AppSetting(Base):
    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
