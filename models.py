from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class CycleStatus(str, Enum):
    open = "open"
    closed = "closed"


class CategoryType(str, Enum):
    need = "need"
    want = "want"
    bucket = "bucket"


class Frequency(str, Enum):
    weekly = "weekly"
    fortnightly = "fortnightly"
    monthly = "monthly"


class TransactionOrigin(str, Enum):
    manual = "manual"
    csv = "csv"
    recurring = "recurring"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Cycle(Base, TimestampMixin):
    __tablename__ = "cycles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    starting_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    income_planned_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    income_actual_cents: Mapped[Optional[int]] = mapped_column(Integer)
    target_end_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    status: Mapped[CycleStatus] = mapped_column(
        SAEnum(CycleStatus), nullable=False, default=CycleStatus.open
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="cycle"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="cycle")

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_cycle_end_after_start"),
        Index(
            "uq_cycle_user_open",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        Index("ix_cycles_user_start", "user_id", "start_date"),
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[CategoryType] = mapped_column(SAEnum(CategoryType), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    recurring_transactions: Mapped[list["RecurringTransaction"]] = relationship(
        "RecurringTransaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer)
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="recurring_transactions"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="recurring_transaction"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_recurring_amount_positive"),
        CheckConstraint(
            "(frequency = 'monthly' AND day_of_month IS NOT NULL "
            "AND day_of_week IS NULL) OR "
            "(frequency != 'monthly' AND day_of_week IS NOT NULL "
            "AND day_of_month IS NULL)",
            name="ck_recurring_schedule_matches_frequency",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("cycles.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    merchant: Mapped[Optional[str]] = mapped_column(String(200))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    is_planned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    origin: Mapped[TransactionOrigin] = mapped_column(
        SAEnum(TransactionOrigin), nullable=False, default=TransactionOrigin.manual
    )
    import_hash: Mapped[Optional[str]] = mapped_column(String(255))
    recurring_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_transactions.id")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    cycle: Mapped["Cycle"] = relationship("Cycle", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    recurring_transaction: Mapped[Optional["RecurringTransaction"]] = relationship(
        "RecurringTransaction", back_populates="transactions"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "recurring_transaction_id",
            "date",
            name="uq_txn_recurring_occurrence",
        ),
        Index("ix_transactions_cycle_date", "cycle_id", "date"),
        Index("ix_transactions_user_category", "user_id", "category_id"),
        Index("ix_transactions_user_import_hash", "user_id", "import_hash"),
        CheckConstraint("amount_cents != 0", name="ck_transactions_amount_nonzero"),
        CheckConstraint(
            "(origin = 'manual' AND import_hash IS NULL "
            "AND recurring_transaction_id IS NULL) OR "
            "(origin = 'csv' AND import_hash IS NOT NULL "
            "AND recurring_transaction_id IS NULL) OR "
            "(origin = 'recurring' AND recurring_transaction_id IS NOT NULL "
            "AND import_hash IS NULL)",
            name="ck_transactions_origin_fields",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cycle_id: Mapped[int] = mapped_column(ForeignKey("cycles.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    planned_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    cycle: Mapped["Cycle"] = relationship("Cycle", back_populates="budgets")
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint(
            "planned_amount_cents >= 0", name="ck_budget_amount_positive"
        ),
        UniqueConstraint("cycle_id", "category_id", name="uq_budget_cycle_category"),
    )


class MerchantRule(Base, TimestampMixin):
    __tablename__ = "merchant_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    merchant_match: Mapped[str] = mapped_column(String(200), nullable=False)
    default_category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )

    default_category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_match", name="uq_merchant_rule_match"),
    )


class UserSetting(Base, TimestampMixin):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    payday_date: Mapped[Optional[date]] = mapped_column(Date)
