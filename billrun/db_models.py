from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    balance_cents: Mapped[int] = mapped_column(Integer, default=0)
    customer_since: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    deactivated_since: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)

    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="customer", cascade="all, delete-orphan")
    invoices: Mapped[list["Invoice"]] = relationship(back_populates="customer", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Customer id={self.id} email={self.email!r} deactivated_since={self.deactivated_since}>"


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    description: Mapped[str] = mapped_column(String(255))
    amount_cents: Mapped[int] = mapped_column(Integer)
    period_days: Mapped[int] = mapped_column(Integer, default=30)
    subscribed_on: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    unsubscribed_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_trial_expiring_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notified_trial_will_expire_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notified_trial_expired_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    customer: Mapped[Customer] = relationship(back_populates="subscriptions")
    invoices: Mapped[list["Invoice"]] = relationship(back_populates="subscription")

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} customer_id={self.customer_id} description={self.description!r}>"


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscriptions.id"), nullable=True, index=True)
    amount_cents: Mapped[int] = mapped_column(Integer)
    period_start: Mapped[datetime] = mapped_column(DateTime)
    period_end: Mapped[datetime] = mapped_column(DateTime)
    due_on: Mapped[datetime] = mapped_column(DateTime)
    paid_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notified_pending_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notified_paid_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notified_overdue_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    customer: Mapped[Customer] = relationship(back_populates="invoices")
    subscription: Mapped[Subscription | None] = relationship(back_populates="invoices")

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} customer_id={self.customer_id} amount_cents={self.amount_cents} due_on={self.due_on}>"


class TaskRun(Base):
    __tablename__ = "task_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_source: Mapped[str] = mapped_column(String(32), default="manual")
    status: Mapped[str] = mapped_column(String(32))
    started_at: Mapped[datetime] = mapped_column(DateTime)
    ended_at: Mapped[datetime] = mapped_column(DateTime)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    summary: Mapped[str] = mapped_column(Text)
    extended: Mapped[str] = mapped_column(Text, default="")
    extended_log_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
