"""Per-entity lifecycle operations run by the billing stages.

Each operation returns a truthy value when it did something and ``None`` when
there was nothing to do for that entity. Errors are raised, never swallowed.
"""

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from billrun.db_models import Customer, Invoice, Subscription
from billrun.notifications import (
    Mailer,
    overdue_notice,
    paid_notice,
    pending_notice,
    trial_expired_notice,
    trial_will_expire_notice,
)


DEBTOR = "debtor"
TRIAL_EXPIRED = "trial_expired"


def generate_next_invoice(db: Session, subscription: Subscription, *, now: datetime, payable_days: int) -> Invoice | None:
    if subscription.unsubscribed_on is not None or subscription.is_trial_expiring_on is not None:
        return None

    stmt = (
        select(Invoice)
        .where(Invoice.subscription_id == subscription.id, Invoice.deleted_on.is_(None))
        .order_by(Invoice.period_end.desc())
        .limit(1)
    )
    last_invoice = db.execute(stmt).scalar_one_or_none()
    period_start = last_invoice.period_end if last_invoice is not None else subscription.subscribed_on
    # The current period is already invoiced.
    if period_start > now:
        return None

    invoice = Invoice(
        customer_id=subscription.customer_id,
        subscription_id=subscription.id,
        amount_cents=subscription.amount_cents,
        period_start=period_start,
        period_end=period_start + timedelta(days=subscription.period_days),
        due_on=period_start + timedelta(days=payable_days),
    )
    db.add(invoice)
    db.flush()
    return invoice


def charge_pending_invoices(db: Session, customer: Customer, *, now: datetime) -> list[Invoice] | None:
    """Pay pending invoices from the customer's balance, oldest first.

    Newer invoices are not charged while an older one remains unpaid.
    """
    stmt = (
        select(Invoice)
        .where(Invoice.customer_id == customer.id, Invoice.paid_on.is_(None), Invoice.deleted_on.is_(None))
        .order_by(Invoice.due_on, Invoice.id)
    )
    charged: list[Invoice] = []
    for invoice in db.execute(stmt).scalars():
        if customer.balance_cents < invoice.amount_cents:
            break
        customer.balance_cents -= invoice.amount_cents
        invoice.paid_on = now
        charged.append(invoice)
    return charged or None


def deactivate_debtor(customer: Customer, *, now: datetime) -> bool | None:
    return _deactivate(customer, now=now, reason=DEBTOR)


def deactivate_trial_expired(customer: Customer, *, now: datetime) -> bool | None:
    return _deactivate(customer, now=now, reason=TRIAL_EXPIRED)


def _deactivate(customer: Customer, *, now: datetime, reason: str) -> bool | None:
    if customer.deactivated_since is not None:
        return None
    customer.deactivated_since = now
    customer.deactivation_reason = reason
    return True


def notify_paid(invoice: Invoice, mailer: Mailer, *, now: datetime) -> bool | None:
    if invoice.paid_on is None or invoice.notified_paid_on is not None:
        return None
    subject, body = paid_notice(invoice)
    mailer.send(invoice.customer.email, subject, body)
    invoice.notified_paid_on = now
    return True


def notify_pending(invoice: Invoice, mailer: Mailer, *, now: datetime) -> bool | None:
    if invoice.paid_on is not None or invoice.notified_pending_on is not None:
        return None
    subject, body = pending_notice(invoice)
    mailer.send(invoice.customer.email, subject, body)
    invoice.notified_pending_on = now
    return True


def notify_overdue(invoice: Invoice, mailer: Mailer, *, now: datetime) -> bool | None:
    if invoice.paid_on is not None or invoice.notified_overdue_on is not None:
        return None
    subject, body = overdue_notice(invoice)
    mailer.send(invoice.customer.email, subject, body)
    invoice.notified_overdue_on = now
    return True


def notify_trial_expired(subscription: Subscription, mailer: Mailer, *, now: datetime) -> bool | None:
    if subscription.notified_trial_expired_on is not None:
        return None
    if subscription.customer.deactivation_reason != TRIAL_EXPIRED:
        return None
    subject, body = trial_expired_notice(subscription)
    mailer.send(subscription.customer.email, subject, body)
    subscription.notified_trial_expired_on = now
    return True


def notify_trial_will_expire(subscription: Subscription, mailer: Mailer, *, now: datetime) -> bool | None:
    if subscription.is_trial_expiring_on is None or subscription.notified_trial_will_expire_on is not None:
        return None
    subject, body = trial_will_expire_notice(subscription)
    mailer.send(subscription.customer.email, subject, body)
    subscription.notified_trial_will_expire_on = now
    return True
