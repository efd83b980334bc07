from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import TransactionType, User
from periods import parse_month
from schemas import TransactionIn
from services import (
    MonthlyAggregator,
    MonthlyTotals,
    TransactionService,
    group_monthly_totals,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str) -> User:
    user = User(name=email.split("@")[0], email=email, password_hash="x")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def add(session, user: User, kind: TransactionType, cents: int, on: date) -> None:
    TransactionService(session, user.id).create(
        TransactionIn(date=on, type=kind, category="Other", amount_cents=cents)
    )


def test_group_monthly_totals_sums_per_month_and_sorts() -> None:
    rows = [
        (date(2024, 2, 1), TransactionType.expense, 5_000),
        (date(2024, 1, 15), TransactionType.income, 50_000),
        (date(2023, 12, 31), TransactionType.expense, 100),
        (date(2024, 1, 20), TransactionType.expense, 20_000),
        (date(2024, 1, 21), TransactionType.income, 1),
    ]
    assert group_monthly_totals(rows) == [
        MonthlyTotals(2023, 12, 0, 100),
        MonthlyTotals(2024, 1, 50_001, 20_000),
        MonthlyTotals(2024, 2, 0, 5_000),
    ]
    assert group_monthly_totals([]) == []


def test_breakdown_matches_dashboard_scenario() -> None:
    session = make_session()
    user = make_user(session, "u@example.com")
    add(session, user, TransactionType.income, 50_000, date(2024, 1, 15))
    add(session, user, TransactionType.expense, 20_000, date(2024, 1, 20))
    add(session, user, TransactionType.expense, 5_000, date(2024, 2, 1))

    entries = MonthlyAggregator(session, user.id).breakdown(date(2024, 2, 10))

    assert [e.label for e in entries] == ["Jan 2024", "Feb 2024"]
    assert [e.month_key for e in entries] == ["2024-01", "2024-02"]
    jan, feb = entries
    assert (jan.income_cents, jan.expense_cents, jan.net_cents) == (
        50_000,
        20_000,
        30_000,
    )
    assert (feb.income_cents, feb.expense_cents, feb.net_cents) == (0, 5_000, -5_000)
    for entry in entries:
        assert parse_month(entry.month_key) == (entry.year, entry.month)


def test_breakdown_excludes_transactions_before_trailing_window() -> None:
    session = make_session()
    user = make_user(session, "u@example.com")
    add(session, user, TransactionType.income, 1_000, date(2023, 2, 28))
    add(session, user, TransactionType.income, 2_000, date(2023, 3, 1))
    add(session, user, TransactionType.expense, 3_000, date(2024, 2, 29))

    entries = MonthlyAggregator(session, user.id).breakdown(date(2024, 2, 10))

    assert [e.month_key for e in entries] == ["2023-03", "2024-02"]
    assert entries[0].income_cents == 2_000
    assert entries[1].expense_cents == 3_000


def test_breakdown_is_scoped_to_owner_and_deterministic() -> None:
    session = make_session()
    alice = make_user(session, "alice@example.com")
    bob = make_user(session, "bob@example.com")
    add(session, alice, TransactionType.income, 10_000, date(2024, 1, 5))
    add(session, bob, TransactionType.income, 99_999, date(2024, 1, 5))
    add(session, bob, TransactionType.expense, 500, date(2023, 12, 5))

    aggregator = MonthlyAggregator(session, alice.id)
    first = aggregator.breakdown(date(2024, 1, 31))
    second = aggregator.breakdown(date(2024, 1, 31))

    assert first == second
    assert len(first) == 1
    assert first[0].income_cents == 10_000


def test_fill_gaps_returns_every_month_of_window() -> None:
    session = make_session()
    user = make_user(session, "u@example.com")
    add(session, user, TransactionType.income, 50_000, date(2024, 1, 15))

    entries = MonthlyAggregator(session, user.id).breakdown(
        date(2024, 2, 10), fill_gaps=True
    )

    assert len(entries) == 12
    assert entries[0].month_key == "2023-03"
    assert entries[-1].month_key == "2024-02"
    by_key = {e.month_key: e for e in entries}
    assert by_key["2024-01"].net_cents == 50_000
    assert by_key["2023-07"].net_cents == 0
    assert sum(e.income_cents for e in entries) == 50_000


def test_breakdown_is_empty_without_activity() -> None:
    session = make_session()
    user = make_user(session, "u@example.com")
    assert MonthlyAggregator(session, user.id).breakdown(date(2024, 2, 10)) == []
