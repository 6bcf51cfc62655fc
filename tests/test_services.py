import json
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import CollectionKind, ProfileCollection, RecurrenceKind
from schemas import (
    BudgetIn,
    CategoryIn,
    GoalIn,
    RecurringSchedule,
    RecurringTransactionIn,
    SingleMonth,
    Transaction,
    TransactionIn,
)
from services import (
    CalendarService,
    CollectionStore,
    GoalStore,
    InvalidSnapshot,
    LedgerService,
    ProfileNotFound,
    ProfileService,
    RecordNotFound,
    SnapshotService,
    parse_amount,
)

TODAY = date(2024, 3, 13)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _tx(tx_id: str, amount: float, recurring: bool = False) -> Transaction:
    return Transaction(
        id=tx_id,
        date=date(2024, 3, 5),
        description=tx_id,
        amount=amount,
        recurring=recurring,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (12.5, 12.5),
        ("-80", -80.0),
        ("1.234,56", 1234.56),
        ("12,50 €", 12.5),
        ("abc", None),
        ("", None),
        ("nan", None),
        (float("inf"), None),
        (None, None),
    ],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_without_profile_loads_are_empty_and_saves_skipped():
    with _session() as session:
        store = CollectionStore(session)
        assert store.profile_id is None
        store.save_transactions([_tx("a", -5)])
        assert store.load_transactions() == []
        assert session.query(ProfileCollection).count() == 0


def test_create_profile_initializes_collections_and_activates():
    with _session() as session:
        profiles = ProfileService(session)
        alice = profiles.create("Alice")
        assert profiles.current_id() == alice.id
        rows = session.query(ProfileCollection).filter_by(profile_id=alice.id).all()
        assert {row.kind for row in rows} == set(CollectionKind)
        assert all(row.payload == "[]" for row in rows)


def test_collections_are_scoped_per_profile():
    with _session() as session:
        profiles = ProfileService(session)
        alice = profiles.create("Alice")
        CollectionStore(session).save_transactions([_tx("a", -5)])
        bob = profiles.create("Bob")
        assert CollectionStore(session).load_transactions() == []
        profiles.switch(alice.id)
        assert [tx.id for tx in CollectionStore(session).load_transactions()] == ["a"]
        assert CollectionStore(session, bob.id).load_transactions() == []


def test_saving_transactions_drops_recurring_instances():
    with _session() as session:
        ProfileService(session).create("Alice")
        store = CollectionStore(session)
        store.save_transactions([_tx("a", -5), _tx("recurring-x-2024-03-01", 10, True)])
        assert [tx.id for tx in store.load_transactions()] == ["a"]


def test_malformed_document_loads_as_empty():
    with _session() as session:
        alice = ProfileService(session).create("Alice")
        row = (
            session.query(ProfileCollection)
            .filter_by(profile_id=alice.id, kind=CollectionKind.transactions)
            .one()
        )
        row.payload = "{not json"
        session.commit()
        assert CollectionStore(session).load_transactions() == []

        row.payload = json.dumps([{"id": "x", "amount": "lots"}])
        session.commit()
        assert CollectionStore(session).load_transactions() == []


def test_delete_active_profile_switches_to_remaining():
    with _session() as session:
        profiles = ProfileService(session)
        alice = profiles.create("Alice")
        bob = profiles.create("Bob")
        profiles.delete(bob.id)
        assert profiles.current_id() == alice.id
        profiles.delete(alice.id)
        assert profiles.current_id() is None
        assert profiles.list() == []
        assert session.query(ProfileCollection).count() == 0


def test_unknown_profile_raises():
    with _session() as session:
        with pytest.raises(ProfileNotFound):
            ProfileService(session).switch("missing")


def test_reset_all_clears_profiles_and_goals():
    with _session() as session:
        ProfileService(session).create("Alice")
        LedgerService(session, today=TODAY).add_goal(GoalIn(name="Car", target=5000))
        ProfileService(session).reset_all()
        assert ProfileService(session).list() == []
        assert GoalStore(session).load() == []


def test_goals_are_shared_across_profiles():
    with _session() as session:
        profiles = ProfileService(session)
        profiles.create("Alice")
        LedgerService(session, today=TODAY).add_goal(GoalIn(name="Car", target="5000"))
        profiles.create("Bob")
        assert [g.name for g in GoalStore(session).load()] == ["Car"]


def test_export_then_partial_import():
    with _session() as session:
        ProfileService(session).create("Alice")
        store = CollectionStore(session)
        store.save_transactions([_tx("a", -5)])
        ledger = LedgerService(session, today=TODAY)
        food = ledger.add_category(CategoryIn(name="Food"))

        bundle = SnapshotService(session).export_bundle()
        assert set(bundle) == {"transactions", "recurrings", "categories", "budgets"}
        assert bundle["transactions"][0]["id"] == "a"

        replaced = SnapshotService(session).import_bundle(
            json.dumps({"transactions": [_tx("b", -7).to_document()]})
        )
        assert replaced == ["transactions"]
        assert [tx.id for tx in store.load_transactions()] == ["b"]
        assert [c.id for c in store.load_categories()] == [food.id]


def test_failed_import_leaves_state_untouched():
    with _session() as session:
        ProfileService(session).create("Alice")
        store = CollectionStore(session)
        store.save_transactions([_tx("a", -5)])
        bad = json.dumps(
            {
                "transactions": [_tx("b", -7).to_document()],
                "categories": [{"id": 3}],
            }
        )
        with pytest.raises(InvalidSnapshot):
            SnapshotService(session).import_bundle(bad)
        with pytest.raises(InvalidSnapshot):
            SnapshotService(session).import_bundle("not json at all")
        assert [tx.id for tx in store.load_transactions()] == ["a"]


def test_ledger_rejects_non_numeric_amounts_silently():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        result = ledger.add_transaction(
            TransactionIn(date=date(2024, 3, 1), description="Lunch", amount="twelve")
        )
        assert result is None
        assert CollectionStore(session).load_transactions() == []
        assert ledger.add_goal(GoalIn(name="Nope", target="-5")) is None


def test_ledger_transaction_edit_and_delete():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        tx = ledger.add_transaction(
            TransactionIn(date=date(2024, 3, 1), description="Lunch", amount="-12,5")
        )
        assert tx.amount == -12.5
        edited = ledger.update_transaction(
            tx.id, TransactionIn(date=date(2024, 3, 2), description="Dinner", amount=-20)
        )
        assert edited.id == tx.id
        assert CollectionStore(session).load_transactions() == [edited]
        ledger.delete_transaction(tx.id)
        assert CollectionStore(session).load_transactions() == []
        with pytest.raises(RecordNotFound):
            ledger.delete_transaction(tx.id)


def test_category_with_budget_and_cascading_delete():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        food = ledger.add_category(CategoryIn(name="Food", budget_amount="200"))
        [budget] = CollectionStore(session).load_budgets()
        assert budget.category_id == food.id
        assert budget.schedule == SingleMonth(month="2024-03")

        ledger.delete_category(food.id)
        assert CollectionStore(session).load_categories() == []
        assert CollectionStore(session).load_budgets() == []


def test_set_budget_updates_same_scope():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        food = ledger.add_category(CategoryIn(name="Food"))
        first = ledger.set_budget(
            BudgetIn(category_id=food.id, amount=100, schedule=RecurringSchedule())
        )
        second = ledger.set_budget(
            BudgetIn(category_id=food.id, amount="150", schedule=RecurringSchedule())
        )
        assert second.id == first.id
        assert [b.amount for b in CollectionStore(session).load_budgets()] == [150]


def test_calendar_views_over_stored_data():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        food = ledger.add_category(CategoryIn(name="Food", budget_amount=200))
        ledger.add_recurring(
            RecurringTransactionIn(
                description="Salary",
                amount="1000",
                kind=RecurrenceKind.monthly,
                day_of_month=1,
                start_date=date(2024, 3, 1),
                end_date=date(2024, 3, 31),
            )
        )
        for amount in (-80, -150):
            ledger.add_transaction(
                TransactionIn(
                    date=date(2024, 3, 5),
                    description="Groceries",
                    amount=amount,
                    category="Food",
                )
            )
        ledger.add_goal(GoalIn(name="Laptop", target=500))

        calendar = CalendarService(session, today=TODAY)
        assert calendar.balances().today == 770
        [progress] = calendar.budget_progress()
        assert progress.budget.category_id == food.id
        assert progress.spent == 230
        assert progress.over
        assert calendar.budget_totals()["total_remaining"] == -30
        assert [tx.amount for tx in calendar.day(date(2024, 3, 1))] == [1000]
        assert len(calendar.month_days(2024, 3)) == 31
        [projection] = calendar.goal_projections()
        assert projection.optimistic.status.value == "reached"


def test_ledger_without_profile_returns_none_and_writes_nothing():
    with _session() as session:
        ledger = LedgerService(session, today=TODAY)
        tx = ledger.add_transaction(
            TransactionIn(date=date(2024, 3, 1), description="Lunch", amount=-12)
        )
        assert tx is None
        assert ledger.add_category(CategoryIn(name="Food", budget_amount=100)) is None
        assert (
            ledger.add_recurring(
                RecurringTransactionIn(
                    description="Rent",
                    amount=-500,
                    kind=RecurrenceKind.monthly,
                    day_of_month=1,
                    start_date=date(2024, 1, 1),
                )
            )
            is None
        )
        assert (
            ledger.set_budget(
                BudgetIn(category_id="c", amount=10, schedule=RecurringSchedule())
            )
            is None
        )
        assert session.query(ProfileCollection).count() == 0


def test_calendar_listings_upcoming_and_year_cells():
    with _session() as session:
        ProfileService(session).create("Alice")
        ledger = LedgerService(session, today=TODAY)
        for description, day_of_month in (("Rent", 1), ("Gym", 20)):
            ledger.add_recurring(
                RecurringTransactionIn(
                    description=description,
                    amount=-50,
                    kind=RecurrenceKind.monthly,
                    day_of_month=day_of_month,
                    start_date=date(2024, 1, 1),
                )
            )
        ledger.add_transaction(
            TransactionIn(date=date(2024, 3, 20), description="Shoes", amount=-30)
        )
        calendar = CalendarService(session, today=TODAY)

        upcoming = calendar.upcoming(30)
        assert [(rule.description, day) for rule, day in upcoming] == [
            ("Gym", date(2024, 3, 20)),
            ("Rent", date(2024, 4, 1)),
        ]
        assert [rule.description for rule, _ in calendar.upcoming(10)] == ["Gym"]

        cells = calendar.year_cells(2024)
        assert cells[date(2024, 3, 20)] == -80
        assert cells[date(2024, 1, 1)] == -50
        assert len(cells) == 24

        march = calendar.transactions(date(2024, 3, 1), date(2024, 3, 31))
        assert [tx.date for tx in march] == [
            date(2024, 3, 1),
            date(2024, 3, 20),
            date(2024, 3, 20),
        ]
        assert len(calendar.transactions()) == 25
