"""The fixed billing stages, in the order they must run.

Later stages depend on the side effects of earlier ones: invoices are generated
before they are charged, debtors are deactivated before the overdue notice
announces it, and charges happen before receipts go out.
"""

from collections.abc import Callable
from datetime import datetime, time, timedelta
import logging

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from billrun import billing
from billrun.config import Settings
from billrun.db_models import Customer, Invoice, Subscription
from billrun.notifications import Mailer
from billrun.schemas import Stage


logger = logging.getLogger(__name__)


GENERATE_INVOICES = "Generating Invoices"
CHARGE_INVOICES = "Charging pending invoices"
DEACTIVATE_DEBTORS = "Deactivating Debtors"
DEACTIVATE_EXPIRED_TRIALS = "Deactivating Expired Trials"
NOTIFY_PAID = "Notifying Paid Invoices"
NOTIFY_PENDING = "Notifying Pending Invoices"
NOTIFY_OVERDUE = "Notifying Overdue Invoices"
NOTIFY_TRIAL_EXPIRED = "Notifying Trial Expired"
NOTIFY_TRIAL_WILL_EXPIRE = "Notifying Trial Will Expire"

STAGE_ORDER = (
    GENERATE_INVOICES,
    CHARGE_INVOICES,
    DEACTIVATE_DEBTORS,
    DEACTIVATE_EXPIRED_TRIALS,
    NOTIFY_PAID,
    NOTIFY_PENDING,
    NOTIFY_OVERDUE,
    NOTIFY_TRIAL_EXPIRED,
    NOTIFY_TRIAL_WILL_EXPIRE,
)


def _fetch(db: Session, stmt: Select) -> Callable[[], list[object]]:
    def fetch() -> list[object]:
        try:
            return list(db.execute(stmt).scalars().unique().all())
        except Exception:
            db.rollback()
            raise

    return fetch


def _transactional(db: Session, fn: Callable[[object], object]) -> Callable[[object], object]:
    # Commit each item on its own so a failure only discards that item's writes.
    def apply(entity: object) -> object:
        try:
            result = fn(entity)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise

    return apply


def trial_warning_window(now: datetime, lead_days: int) -> tuple[datetime, datetime]:
    target = now.date() + timedelta(days=lead_days)
    start = datetime.combine(target, time.min)
    return start, start + timedelta(days=1)


def build_billing_stages(db: Session, settings: Settings, mailer: Mailer, *, now: datetime) -> tuple[Stage, ...]:
    unpaid = (Invoice.deleted_on.is_(None), Invoice.paid_on.is_(None))
    warn_from, warn_until = trial_warning_window(now, settings.trial_lead_days)

    stages = (
        Stage(
            name=GENERATE_INVOICES,
            operation=_transactional(
                db,
                lambda subscription: billing.generate_next_invoice(
                    db, subscription, now=now, payable_days=settings.payable_days
                ),
            ),
            source=_fetch(
                db,
                select(Subscription)
                .where(Subscription.is_trial_expiring_on.is_(None), Subscription.unsubscribed_on.is_(None))
                .order_by(Subscription.id),
            ),
        ),
        Stage(
            name=CHARGE_INVOICES,
            operation=_transactional(db, lambda customer: billing.charge_pending_invoices(db, customer, now=now)),
            source=_fetch(
                db,
                select(Customer).join(Customer.invoices).where(*unpaid).distinct().order_by(Customer.id),
            ),
        ),
        Stage(
            name=DEACTIVATE_DEBTORS,
            operation=_transactional(db, lambda customer: billing.deactivate_debtor(customer, now=now)),
            source=_fetch(
                db,
                select(Customer)
                .join(Customer.invoices)
                .where(Invoice.due_on <= now, *unpaid, Customer.deactivated_since.is_(None))
                .distinct()
                .order_by(Customer.id),
            ),
        ),
        Stage(
            name=DEACTIVATE_EXPIRED_TRIALS,
            operation=_transactional(db, lambda customer: billing.deactivate_trial_expired(customer, now=now)),
            source=_fetch(
                db,
                select(Customer)
                .join(Customer.subscriptions)
                .where(Subscription.is_trial_expiring_on < now, Subscription.unsubscribed_on.is_(None))
                .distinct()
                .order_by(Customer.id),
            ),
        ),
        Stage(
            name=NOTIFY_PAID,
            operation=_transactional(db, lambda invoice: billing.notify_paid(invoice, mailer, now=now)),
            source=_fetch(
                db,
                select(Invoice)
                .where(Invoice.paid_on.is_not(None), Invoice.deleted_on.is_(None), Invoice.notified_paid_on.is_(None))
                .order_by(Invoice.id),
            ),
        ),
        Stage(
            name=NOTIFY_PENDING,
            operation=_transactional(db, lambda invoice: billing.notify_pending(invoice, mailer, now=now)),
            source=_fetch(
                db,
                select(Invoice).where(*unpaid, Invoice.notified_pending_on.is_(None)).order_by(Invoice.id),
            ),
        ),
        Stage(
            name=NOTIFY_OVERDUE,
            operation=_transactional(db, lambda invoice: billing.notify_overdue(invoice, mailer, now=now)),
            source=_fetch(
                db,
                select(Invoice)
                .where(Invoice.due_on <= now, *unpaid, Invoice.notified_overdue_on.is_(None))
                .order_by(Invoice.id),
            ),
        ),
        Stage(
            name=NOTIFY_TRIAL_EXPIRED,
            operation=_transactional(
                db, lambda subscription: billing.notify_trial_expired(subscription, mailer, now=now)
            ),
            source=_fetch(
                db,
                select(Subscription)
                .join(Subscription.customer)
                .where(Customer.deactivation_reason == billing.TRIAL_EXPIRED)
                .order_by(Subscription.id),
            ),
        ),
        Stage(
            name=NOTIFY_TRIAL_WILL_EXPIRE,
            operation=_transactional(
                db, lambda subscription: billing.notify_trial_will_expire(subscription, mailer, now=now)
            ),
            source=_fetch(
                db,
                select(Subscription)
                .join(Subscription.customer)
                .where(
                    Customer.deactivated_since.is_(None),
                    Subscription.is_trial_expiring_on >= warn_from,
                    Subscription.is_trial_expiring_on < warn_until,
                )
                .order_by(Subscription.id),
            ),
        ),
    )
    logger.debug("billing stages built", extra={"now": now.isoformat(), "trial_lead_days": settings.trial_lead_days})
    return stages
