"""Budget threshold monitoring.

The daily batch walks every budget, totals the current month's expenses for
the budget's user and category, and sends one email per enabled threshold
the spending has reached. A threshold alerts at most once per calendar day:
before sending, the batch looks for a ``sent`` notification recorded for that
threshold since local midnight. Failed attempts are recorded too, but they do
not count as sent, so the next run retries them.
"""
import json
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Callable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload

from database import (
    Budget,
    Expense,
    Notification,
    SessionLocal,
)
from notifications import (
    BudgetNotificationData,
    SendResult,
    UnsupportedNotificationType,
    send_budget_notification,
)

logger = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"

Sender = Callable[[BudgetNotificationData, str], SendResult]

_run_lock = threading.Lock()


class BudgetNotFoundError(LookupError):
    """Raised when a budget does not exist or belongs to another user."""


class BudgetCheckInProgress(RuntimeError):
    """Raised when another budget check is already running in this process."""


@dataclass
class NotificationOutcome:
    budget_id: int
    budget_name: str
    threshold_id: int
    threshold: int
    percentage: int
    success: bool


@dataclass
class BudgetCheckResult:
    checked: int = 0
    notifications: List[NotificationOutcome] = field(default_factory=list)

    @property
    def notifications_sent(self) -> int:
        return len(self.notifications)


def current_month_window(today: date) -> Tuple[date, date]:
    """Return the first day of ``today``'s month and of the following month."""
    start = today.replace(day=1)
    return start, start + relativedelta(months=+1)


def spent_percentage(spent: float, amount: float) -> int:
    if amount <= 0:
        return 0
    # half-up, not banker's rounding
    return int(math.floor(spent / amount * 100 + 0.5))


def budget_display_name(budget: Budget) -> str:
    return budget.name or f"Budget for {budget.category.name}"


def total_spent(db: Session, user_id: int, category_id: int, start: date, end: date) -> float:
    total = (
        db.query(func.coalesce(func.sum(Expense.amount), 0.0))
        .filter(
            Expense.user_id == user_id,
            Expense.category_id == category_id,
            Expense.date >= start,
            Expense.date < end,
        )
        .scalar()
    )
    return float(total or 0.0)


def already_sent_today(db: Session, threshold_id: int, now: datetime) -> bool:
    midnight = datetime.combine(now.date(), time.min)
    existing = (
        db.query(Notification.id)
        .filter(
            Notification.notification_threshold_id == threshold_id,
            Notification.sent_at >= midnight,
            Notification.status == STATUS_SENT,
        )
        .first()
    )
    return existing is not None


def _deliver(send: Sender, data: BudgetNotificationData, channel: str) -> SendResult:
    try:
        return send(data, channel)
    except UnsupportedNotificationType as exc:
        logger.error("Threshold channel %r rejected: %s", channel, exc)
        return SendResult(success=False, error=str(exc))
    except Exception as exc:
        logger.exception("Sending %s alert for budget %s failed", channel, data.budget_id)
        return SendResult(success=False, error=str(exc))


def check_all_budgets(
    db: Session,
    send: Optional[Sender] = None,
    now: Optional[datetime] = None,
) -> BudgetCheckResult:
    now = now or datetime.now()
    send = send or send_budget_notification
    start, end = current_month_window(now.date())

    budgets = (
        db.query(Budget)
        .options(
            joinedload(Budget.category),
            joinedload(Budget.user),
            selectinload(Budget.thresholds),
        )
        .order_by(Budget.id)
        .all()
    )

    result = BudgetCheckResult(checked=len(budgets))

    for budget in budgets:
        spent = total_spent(db, budget.user_id, budget.category_id, start, end)
        if spent == 0:
            continue

        percentage = spent_percentage(spent, budget.amount)
        name = budget_display_name(budget)
        thresholds = sorted(
            (t for t in budget.thresholds if t.enabled), key=lambda t: t.threshold
        )

        for threshold in thresholds:
            if percentage < threshold.threshold:
                continue
            if already_sent_today(db, threshold.id, now):
                logger.debug(
                    "Threshold %s of budget %s already alerted today",
                    threshold.id,
                    budget.id,
                )
                continue

            data = BudgetNotificationData(
                user_id=budget.user_id,
                budget_id=budget.id,
                budget_name=name,
                category_name=budget.category.name,
                budget_amount=budget.amount,
                total_spent=spent,
                percentage=percentage,
                threshold=threshold.threshold,
                user_email=budget.user.email,
            )
            outcome = _deliver(send, data, threshold.type)

            db.add(
                Notification(
                    notification_threshold_id=threshold.id,
                    sent_at=now,
                    type=threshold.type,
                    status=STATUS_SENT if outcome.success else STATUS_FAILED,
                    message_id=outcome.message_id if outcome.success else None,
                    content=json.dumps(data.to_dict()),
                )
            )
            db.commit()

            if outcome.success:
                logger.info(
                    "Sent %s%% alert for budget %s to %s",
                    threshold.threshold,
                    budget.id,
                    data.user_email,
                )
            else:
                logger.warning(
                    "Failed %s%% alert for budget %s: %s",
                    threshold.threshold,
                    budget.id,
                    outcome.error,
                )

            result.notifications.append(
                NotificationOutcome(
                    budget_id=budget.id,
                    budget_name=name,
                    threshold_id=threshold.id,
                    threshold=threshold.threshold,
                    percentage=percentage,
                    success=outcome.success,
                )
            )

    return result


def run_budget_check(
    db: Optional[Session] = None,
    send: Optional[Sender] = None,
    now: Optional[datetime] = None,
) -> BudgetCheckResult:
    """Run the batch unless another run already holds the lock."""
    if not _run_lock.acquire(blocking=False):
        raise BudgetCheckInProgress("A budget check is already running")
    try:
        logger.info("Starting budget check for all users...")
        if db is None:
            with SessionLocal() as session:
                result = check_all_budgets(session, send=send, now=now)
        else:
            result = check_all_budgets(db, send=send, now=now)
        logger.info(
            "Budget check completed: %s budgets checked, %s notifications sent",
            result.checked,
            result.notifications_sent,
        )
        return result
    finally:
        _run_lock.release()


def get_budget_progress(
    db: Session, user_id: int, budget_id: int, now: Optional[datetime] = None
) -> dict:
    now = now or datetime.now()
    budget = (
        db.query(Budget)
        .options(joinedload(Budget.category), selectinload(Budget.thresholds))
        .filter(Budget.id == budget_id, Budget.user_id == user_id)
        .first()
    )
    if budget is None:
        raise BudgetNotFoundError("Budget not found or access denied")

    start, end = current_month_window(now.date())
    spent = total_spent(db, user_id, budget.category_id, start, end)

    return {
        "budget": {
            "id": budget.id,
            "name": budget_display_name(budget),
            "amount": budget.amount,
            "category": budget.category.name,
        },
        "total_spent": spent,
        "percentage": spent_percentage(spent, budget.amount),
        "thresholds": [
            {
                "id": t.id,
                "threshold": t.threshold,
                "type": t.type,
                "enabled": t.enabled,
            }
            for t in budget.thresholds
        ],
    }
