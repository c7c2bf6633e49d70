from __future__ import annotations

from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Collection: jobs
# ---------------------------


class JobRow(Base):
    __tablename__ = "cb_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    # Display order of the collection; 0 is the most recent / first shown.
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    client: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    address: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    contact_name: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    phone: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    email: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'active'"))
    budget: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    is_synced: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("0")
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('active','completed','pending')",
            name="ck_cb_jobs_status",
        ),
        CheckConstraint("budget >= 0", name="ck_cb_jobs_budget"),
    )


# ---------------------------
# Collection: expenses
# ---------------------------


class ExpenseRow(Base):
    __tablename__ = "cb_expenses"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    # Primary ("default") job; line items may override it individually.
    job_id: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    date: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    total_amount: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    tax_amount: Mapped[float] = mapped_column(
        Numeric(18, 2, asdecimal=False), nullable=False, server_default=text("0")
    )
    currency: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'$'"))
    category: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'Other'"))
    notes: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    # Ordered line items: [{"description", "amount", "job_id"}]
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Epoch millis, set once at creation.
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_synced: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("0")
    )


# ---------------------------
# Key/value settings
# ---------------------------


class SettingRow(Base):
    __tablename__ = "cb_settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


__all__ = [
    "Base",
    "ExpenseRow",
    "JobRow",
    "SettingRow",
]
