from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from auth import hash_password, validate_email, verify_password
from config import get_settings
from csv_utils import export_transactions
from models import Transaction, TransactionType, User, UserSession
from periods import (
    InvalidMonthFilter,
    Period,
    add_months,
    month_key,
    month_label,
    month_period,
    trailing_window_start,
)
from schemas import TransactionIn, UserIn

logger = logging.getLogger(__name__)


class TransactionNotFound(ValueError):
    pass


class NothingToExport(ValueError):
    pass


class RegistrationError(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


def _is_all(value: Optional[str]) -> bool:
    return value is None or value.strip() == "" or value.strip() == "all"


@dataclass
class TransactionFilters:
    user_id: int
    period: Optional[Period] = None
    category: Optional[str] = None
    rejected_month: Optional[str] = None

    @property
    def month(self) -> str:
        return self.period.slug if self.period else "all"

    def clauses(self) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if self.period:
            conditions.append(
                Transaction.date.between(self.period.start, self.period.end)
            )
        if self.category:
            conditions.append(Transaction.category == self.category)
        return conditions

    def matches(self, txn: Transaction) -> bool:
        if txn.user_id != self.user_id:
            return False
        if self.period and not self.period.contains(txn.date):
            return False
        if self.category and txn.category != self.category:
            return False
        return True

    def as_query(self) -> dict[str, str]:
        return {"month": self.month, "category": self.category or "all"}


def resolve_filters(
    user_id: int, month: Optional[str] = None, category: Optional[str] = None
) -> TransactionFilters:
    """Translate raw dashboard query values into owner-scoped filters.

    A malformed month does not fail the request: it is recorded on
    ``rejected_month`` and no date constraint is applied.
    """
    filters = TransactionFilters(user_id=user_id)
    if not _is_all(month):
        try:
            filters.period = month_period(month)
        except InvalidMonthFilter as exc:
            logger.warning(
                f"month_filter_rejected: user_id={user_id} month={month!r} reason={exc}"
            )
            filters.rejected_month = month
    if not _is_all(category):
        filters.category = category.strip()
    return filters


@dataclass(frozen=True)
class Summary:
    income_cents: int = 0
    expense_cents: int = 0
    net_cents: int = 0


def calculate_summary(transactions: Iterable[Transaction]) -> Summary:
    income = 0
    expense = 0
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount_cents
        elif txn.type == TransactionType.expense:
            expense += txn.amount_cents
    return Summary(
        income_cents=income, expense_cents=expense, net_cents=income - expense
    )


@dataclass(frozen=True)
class MonthlyTotals:
    year: int
    month: int
    income_cents: int
    expense_cents: int


def group_monthly_totals(
    rows: Iterable[tuple[date, TransactionType, int]],
) -> list[MonthlyTotals]:
    """Sum ``(date, type, amount_cents)`` rows per calendar month, oldest first."""
    totals: dict[tuple[int, int], tuple[int, int]] = {}
    for txn_date, txn_type, amount_cents in rows:
        key = (txn_date.year, txn_date.month)
        income, expense = totals.get(key, (0, 0))
        if txn_type == TransactionType.income:
            income += amount_cents
        elif txn_type == TransactionType.expense:
            expense += amount_cents
        totals[key] = (income, expense)
    return [
        MonthlyTotals(
            year=year, month=month, income_cents=income, expense_cents=expense
        )
        for (year, month), (income, expense) in sorted(totals.items())
    ]


@dataclass(frozen=True)
class MonthlyBreakdownEntry:
    year: int
    month: int
    label: str
    month_key: str
    income_cents: int
    expense_cents: int
    net_cents: int


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def _filters(self, filters: Optional[TransactionFilters]) -> TransactionFilters:
        if filters is None:
            return TransactionFilters(user_id=self.user_id)
        if filters.user_id != self.user_id:
            raise ValueError("Filters belong to a different user")
        return filters

    def find(
        self, filters: Optional[TransactionFilters] = None, order: str = "newest"
    ) -> list[Transaction]:
        filters = self._filters(filters)
        stmt = select(Transaction).where(*filters.clauses())
        if order == "newest":
            stmt = stmt.order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        elif order == "oldest":
            stmt = stmt.order_by(
                Transaction.date.asc(),
                Transaction.created_at.asc(),
                Transaction.id.asc(),
            )
        else:
            raise ValueError(f"Unknown sort order '{order}'")
        return list(self.session.scalars(stmt).all())

    def aggregate_monthly(self, since: date) -> list[MonthlyTotals]:
        stmt = select(
            Transaction.date, Transaction.type, Transaction.amount_cents
        ).where(Transaction.user_id == self.user_id, Transaction.date >= since)
        return group_monthly_totals(tuple(row) for row in self.session.execute(stmt))

    def categories(self) -> list[str]:
        defaults = list(get_settings().categories)
        stmt = (
            select(Transaction.category)
            .where(Transaction.user_id == self.user_id)
            .distinct()
            .order_by(Transaction.category)
        )
        used = self.session.scalars(stmt).all()
        return defaults + [name for name in used if name not in defaults]

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            category=data.category.strip(),
            amount_cents=data.amount_cents,
            note=data.note.strip(),
        )
        if not txn.category:
            raise ValueError("Category is required")
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: user_id={self.user_id} id={txn.id}")
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        category = data.category.strip()
        if not category:
            raise ValueError("Category is required")
        txn.date = data.date
        txn.type = data.type
        txn.category = category
        txn.amount_cents = data.amount_cents
        txn.note = data.note.strip()
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_updated: user_id={self.user_id} id={txn.id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")


class MonthlyAggregator:
    def __init__(self, session: Session, user_id: int) -> None:
        self.transactions = TransactionService(session, user_id)

    @staticmethod
    def window_start(today: Optional[date] = None) -> date:
        return trailing_window_start(today)

    @staticmethod
    def _entry(
        year: int, month: int, income: int, expense: int
    ) -> MonthlyBreakdownEntry:
        return MonthlyBreakdownEntry(
            year=year,
            month=month,
            label=month_label(year, month),
            month_key=month_key(year, month),
            income_cents=income,
            expense_cents=expense,
            net_cents=income - expense,
        )

    def breakdown(
        self, today: Optional[date] = None, *, fill_gaps: bool = False
    ) -> list[MonthlyBreakdownEntry]:
        today = today or date.today()
        since = self.window_start(today)
        totals = self.transactions.aggregate_monthly(since)
        if not fill_gaps:
            return [
                self._entry(row.year, row.month, row.income_cents, row.expense_cents)
                for row in totals
            ]

        by_month = {(row.year, row.month): row for row in totals}
        out: list[MonthlyBreakdownEntry] = []
        current = since
        last = today.replace(day=1)
        if totals:
            last = max(last, date(totals[-1].year, totals[-1].month, 1))
        while current <= last:
            row = by_month.get((current.year, current.month))
            income = row.income_cents if row else 0
            expense = row.expense_cents if row else 0
            out.append(self._entry(current.year, current.month, income, expense))
            current = add_months(current, 1)
        return out


@dataclass
class Dashboard:
    transactions: list[Transaction]
    summary: Summary
    monthly_breakdown: list[MonthlyBreakdownEntry]
    categories: list[str]
    filters: TransactionFilters
    edit_transaction: Optional[Transaction] = None
    errors: list[str] = field(default_factory=list)


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)
        self.aggregator = MonthlyAggregator(session, user_id)

    def build(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        today: Optional[date] = None,
        fill_gaps: bool = False,
    ) -> Dashboard:
        filters = filters or TransactionFilters(user_id=self.user_id)
        txns = self.transactions.find(filters)
        dashboard = Dashboard(
            transactions=txns,
            summary=calculate_summary(txns),
            monthly_breakdown=self.aggregator.breakdown(today, fill_gaps=fill_gaps),
            categories=self.transactions.categories(),
            filters=filters,
        )
        if filters.rejected_month is not None:
            dashboard.errors.append(
                f"Invalid month filter '{filters.rejected_month}'; showing all months."
            )
        return dashboard

    def for_edit(self, transaction_id: int) -> Dashboard:
        txn = self.transactions.get(transaction_id)
        txns = self.transactions.find()
        return Dashboard(
            transactions=txns,
            summary=calculate_summary(txns),
            monthly_breakdown=[],
            categories=self.transactions.categories(),
            filters=TransactionFilters(user_id=self.user_id),
            edit_transaction=txn,
        )


class CSVService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def export(self) -> str:
        service = TransactionService(self.session, self.user_id)
        if not service.has_any():
            raise NothingToExport("No transactions to export.")
        return export_transactions(service.find(order="oldest"))


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(User.email == email.strip().lower())
        return self.session.scalar(stmt)

    def register(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        if not validate_email(email):
            raise RegistrationError("Please enter a valid email address format.")
        if self.by_email(email):
            raise RegistrationError("This email is already registered. Please login.")
        name = data.name.strip()
        if not name:
            raise RegistrationError("Name is required.")
        user = User(name=name, email=email, password_hash=hash_password(data.password))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        if not validate_email(email):
            raise InvalidCredentials("Invalid email format.")
        user = self.by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid email or password.")
        return user


class SessionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.max_age = timedelta(hours=get_settings().session_max_age_hours)

    def create(self, user_id: int, now: Optional[datetime] = None) -> UserSession:
        now = now or datetime.utcnow()
        record = UserSession(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + self.max_age,
        )
        self.session.add(record)
        self.session.commit()
        logger.info(f"session_started: user_id={user_id}")
        return record

    def resolve(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Optional[User]:
        now = now or datetime.utcnow()
        record = self.session.get(UserSession, session_id)
        if not record or record.expires_at <= now:
            return None
        return self.session.get(User, record.user_id)

    def destroy(self, session_id: str) -> None:
        record = self.session.get(UserSession, session_id)
        if record is None:
            return
        self.session.delete(record)
        self.session.commit()
        logger.info(f"session_ended: user_id={record.user_id}")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        result = self.session.execute(
            delete(UserSession).where(UserSession.expires_at <= now)
        )
        self.session.commit()
        return result.rowcount or 0
