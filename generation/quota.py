"""
Quota Ledger

Monthly paper quota per user, derived from PaperRequest rows: every request
created in the current UTC calendar month counts, whatever its outcome.
A negative plan limit means unlimited.
"""

import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from database import crud
from database.models import User
from services.errors import NoActivePlanError, NotFoundError, QuotaExhaustedError

UNLIMITED = sys.maxsize


def current_period(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """[start, end) of the calendar month containing now (UTC)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


@dataclass
class QuotaSnapshot:
    plan: Optional[str]
    limit: int
    used: int
    remaining: int
    period_start: datetime
    period_end: datetime

    @property
    def unlimited(self) -> bool:
        return self.limit < 0


class QuotaLedger:
    def remaining(
        self,
        db: Session,
        user_id: int,
        plan_limit: int,
        period_start: datetime,
        period_end: datetime,
    ) -> int:
        """Papers the user may still request in the period; UNLIMITED for negative limits."""
        if plan_limit < 0:
            return UNLIMITED
        used = crud.count_paper_requests(db, user_id, period_start, period_end)
        return max(plan_limit - used, 0)

    def snapshot(self, db: Session, user: User, now: Optional[datetime] = None) -> QuotaSnapshot:
        if user.plan is None:
            raise NoActivePlanError("No active plan")
        start, end = current_period(now)
        limit = user.plan.max_papers_per_month
        used = 0 if limit < 0 else crud.count_paper_requests(db, user.id, start, end)
        remaining = UNLIMITED if limit < 0 else max(limit - used, 0)
        return QuotaSnapshot(
            plan=user.plan.name,
            limit=limit,
            used=used,
            remaining=remaining,
            period_start=start,
            period_end=end,
        )

    def acquire(self, db: Session, user_id: int, now: Optional[datetime] = None) -> Tuple[User, int]:
        """
        Lock the user row and check the quota.

        The lock is held until the caller commits, so the check and the insert
        of the new PaperRequest happen under it.

        Returns:
            (user, remaining before this request)
        """
        user = crud.lock_user(db, user_id)
        if user is None or not user.is_active:
            db.rollback()
            raise NotFoundError("User not found")
        if user.plan is None:
            db.rollback()
            raise NoActivePlanError("No active plan")

        start, end = current_period(now)
        remaining = self.remaining(db, user.id, user.plan.max_papers_per_month, start, end)
        if remaining <= 0:
            db.rollback()
            raise QuotaExhaustedError(
                "Monthly paper limit exceeded",
                details={"limit": user.plan.max_papers_per_month, "period_end": end.isoformat()},
            )
        return user, remaining
