"""Tests for database models and repository layer."""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from payments_reconciler.database import (
    DatabaseManager,
    LegalDocumentOwnership,
    LegalDocumentOwnershipRepository,
    PaymentIntent,
    PaymentIntentRepository,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    ProviderTransactionRepository,
    ReconciliationItem,
    ReconciliationMode,
    ReconciliationRepository,
    ReconciliationStatus,
    create_async_engine,
    get_database_url,
    is_sqlite_memory,
)

from conftest import IN_WINDOW, WINDOW_END, WINDOW_START


class TestPaymentIntentModel:
    """Tests for the PaymentIntent model."""

    async def test_create_intent_defaults(self, db_session):
        """Test creating an intent fills id, flags and timestamps."""
        intent = PaymentIntent(
            purpose=PaymentPurpose.PUBLIC_PRODUCT_PURCHASE.value,
            amount=Decimal("100"),
        )
        db_session.add(intent)
        await db_session.flush()

        assert intent.id is not None
        assert intent.provider == "mpesa"
        assert intent.status == "pending"
        assert intent.currency == "KES"
        assert intent.is_finalized is False
        assert intent.created_at is not None
        assert intent.updated_at is None

    def test_reconciliation_reference_by_provider(self, make_intent):
        """Test Mpesa intents are referenced by checkout id, others by provider reference."""
        mpesa = make_intent(checkout_request_id="ws_CO_1", provider_reference="ignored")
        paystack = make_intent(
            provider=PaymentProvider.PAYSTACK.value,
            checkout_request_id="ignored",
            provider_reference="ps_ref",
        )

        assert mpesa.reconciliation_reference == "ws_CO_1"
        assert paystack.reconciliation_reference == "ps_ref"

    def test_payment_reference_precedence(self, make_intent):
        """Test the receipt number wins, then manual reference, then checkout id, then provider reference."""
        assert make_intent(
            mpesa_receipt_number="RCPT", manual_reference="MAN", checkout_request_id="CO"
        ).payment_reference == "RCPT"
        assert make_intent(manual_reference="MAN", checkout_request_id="CO").payment_reference == "MAN"
        assert make_intent(mpesa_receipt_number="  ", checkout_request_id="CO").payment_reference == "CO"
        assert make_intent(provider_reference="REF").payment_reference == "REF"
        assert make_intent().payment_reference == "PAYMENT"

    async def test_to_dict(self, seed, make_intent):
        """Test intent dictionary conversion."""
        intent = await seed(make_intent(checkout_request_id="CO-1"))

        data = intent.to_dict()
        assert data["id"] == intent.id
        assert data["amount"] == "500"
        assert data["checkout_request_id"] == "CO-1"
        assert data["is_finalized"] is False

    async def test_provider_reference_is_unique_per_provider(self, db_session, make_intent):
        """Test two intents of one provider cannot share a provider reference."""
        db_session.add(make_intent(provider_reference="DUP"))
        db_session.add(make_intent(provider_reference="DUP"))

        with pytest.raises(IntegrityError):
            await db_session.flush()


class TestPaymentIntentRepository:
    """Tests for PaymentIntentRepository."""

    async def test_get_by_id(self, db_session, seed, make_intent):
        """Test reading an intent by id, with and without a lock."""
        intent = await seed(make_intent())
        repo = PaymentIntentRepository(db_session)

        assert (await repo.get_by_id(intent.id)).id == intent.id
        assert (await repo.get_by_id(intent.id, for_update=True)).id == intent.id
        assert await repo.get_by_id("missing") is None

    async def test_list_in_window_uses_effective_time(self, db_session, seed, make_intent):
        """Test the window uses provider paid time, then updated time, then created time."""
        paid_inside = make_intent(provider_paid_at=IN_WINDOW, created_at=WINDOW_START - timedelta(days=3))
        updated_inside = make_intent(
            provider_paid_at=None,
            updated_at=IN_WINDOW,
            created_at=WINDOW_START - timedelta(days=3),
        )
        paid_outside = make_intent(provider_paid_at=WINDOW_END, created_at=IN_WINDOW)
        at_start = make_intent(provider_paid_at=WINDOW_START)
        await seed(paid_inside, updated_inside, paid_outside, at_start)

        found = await PaymentIntentRepository(db_session).list_in_window(WINDOW_START, WINDOW_END)
        ids = {i.id for i in found}

        assert ids == {paid_inside.id, updated_inside.id, at_start.id}

    async def test_list_in_window_filters_provider(self, db_session, seed, make_intent):
        """Test the provider filter."""
        mpesa = make_intent()
        paystack = make_intent(provider=PaymentProvider.PAYSTACK.value)
        await seed(mpesa, paystack)

        found = await PaymentIntentRepository(db_session).list_in_window(
            WINDOW_START, WINDOW_END, PaymentProvider.PAYSTACK.value
        )

        assert [i.id for i in found] == [paystack.id]

    async def test_list_unfinalized_successes(self, db_session, seed, make_intent):
        """Test only old successful unfinalized intents are listed, oldest first."""
        now = datetime(2025, 6, 1, 12, 0)
        older = make_intent(created_at=now - timedelta(hours=3))
        old = make_intent(created_at=now - timedelta(hours=2))
        too_recent = make_intent(created_at=now - timedelta(minutes=1))
        finalized = make_intent(created_at=now - timedelta(hours=4), is_finalized=True)
        pending = make_intent(created_at=now - timedelta(hours=4), status=PaymentStatus.PENDING.value)
        await seed(old, older, too_recent, finalized, pending)

        ids = await PaymentIntentRepository(db_session).list_unfinalized_successes(
            now - timedelta(minutes=10), limit=10
        )

        assert ids == [older.id, old.id]

    async def test_list_unfinalized_successes_respects_limit(self, db_session, seed, make_intent):
        """Test the batch limit, which is never below one."""
        now = datetime(2025, 6, 1, 12, 0)
        await seed(*[make_intent(created_at=now - timedelta(hours=h)) for h in range(1, 4)])
        repo = PaymentIntentRepository(db_session)

        assert len(await repo.list_unfinalized_successes(now, limit=2)) == 2
        assert len(await repo.list_unfinalized_successes(now, limit=0)) == 1

    async def test_list_unfulfilled_legal_document_purchases(self, db_session, seed, make_intent):
        """Test legal document purchases without ownership are listed, newest first."""
        now = datetime(2025, 6, 1, 12, 0)
        legal = dict(purpose=PaymentPurpose.PUBLIC_LEGAL_DOCUMENT_PURCHASE.value, is_finalized=True)
        first = make_intent(legal_document_id="doc-1", created_at=now - timedelta(hours=3), **legal)
        second = make_intent(legal_document_id="doc-2", created_at=now - timedelta(hours=2), **legal)
        owned = make_intent(legal_document_id="doc-3", created_at=now - timedelta(hours=2), **legal)
        product = make_intent(created_at=now - timedelta(hours=2))
        await seed(
            first,
            second,
            owned,
            product,
            LegalDocumentOwnership(
                user_id="user-1", legal_document_id="doc-3", amount=Decimal("500"), currency="KES"
            ),
        )

        ids = await PaymentIntentRepository(db_session).list_unfulfilled_legal_document_purchases(
            now - timedelta(minutes=10), limit=10
        )

        assert ids == [second.id, first.id]

    async def test_mark_finalized(self, db_session, seed, make_intent):
        """Test marking an intent finalized stamps updated_at."""
        intent = await seed(make_intent())
        repo = PaymentIntentRepository(db_session)
        loaded = await repo.get_by_id(intent.id)

        await repo.mark_finalized(loaded)

        assert loaded.is_finalized is True
        assert loaded.updated_at is not None


class TestProviderTransactionRepository:
    """Tests for ProviderTransactionRepository."""

    async def test_upsert_creates_then_refreshes(self, db_session):
        """Test the second upsert of a key updates the same row and keeps first_seen_at."""
        repo = ProviderTransactionRepository(db_session)

        created = await repo.upsert(
            provider="mpesa",
            provider_transaction_id="TX-9",
            reference="CO-9",
            amount=Decimal("100"),
            currency="KES",
            paid_at=IN_WINDOW,
        )
        first_seen = created.first_seen_at

        refreshed = await repo.upsert(
            provider="mpesa",
            provider_transaction_id="TX-9",
            reference="",
            amount=Decimal("120"),
            currency="KES",
            paid_at=IN_WINDOW,
            channel="paybill",
        )

        assert refreshed.id == created.id
        assert refreshed.first_seen_at == first_seen
        assert refreshed.last_seen_at >= first_seen
        assert refreshed.amount == Decimal("120")
        assert refreshed.reference == ""
        assert refreshed.channel == "paybill"
        assert refreshed.status == "success"

    async def test_same_transaction_id_different_providers(self, db_session):
        """Test the key is (provider, provider_transaction_id)."""
        repo = ProviderTransactionRepository(db_session)
        mpesa = await repo.upsert("mpesa", "TX-1", "R", Decimal("1"), "KES")
        paystack = await repo.upsert("paystack", "TX-1", "R", Decimal("1"), "KES")

        assert mpesa.id != paystack.id

    async def test_list_in_window_falls_back_to_last_seen(self, db_session, seed, make_transaction):
        """Test transactions without a paid time are placed by their last seen time."""
        paid = make_transaction(provider_transaction_id="TX-A")
        unpaid = make_transaction(provider_transaction_id="TX-B", paid_at=None, last_seen_at=IN_WINDOW)
        outside = make_transaction(provider_transaction_id="TX-C", paid_at=WINDOW_END + timedelta(hours=1))
        await seed(paid, unpaid, outside)

        found = await ProviderTransactionRepository(db_session).list_in_window(WINDOW_START, WINDOW_END)

        assert {t.provider_transaction_id for t in found} == {"TX-A", "TX-B"}


class TestReconciliationRepository:
    """Tests for ReconciliationRepository."""

    async def test_create_run_and_items(self, db_session):
        """Test a run with items, and counts by status."""
        repo = ReconciliationRepository(db_session)
        run = await repo.create_run(WINDOW_START, WINDOW_END, provider="mpesa", performed_by_user_id="ops-1")
        await repo.add_items(run, [
            ReconciliationItem(provider="mpesa", status=ReconciliationStatus.MATCHED.value),
            ReconciliationItem(provider="mpesa", status=ReconciliationStatus.MATCHED.value),
            ReconciliationItem(provider="mpesa", status=ReconciliationStatus.DUPLICATE.value),
        ])

        assert run.mode == ReconciliationMode.AUTO.value
        assert len(await repo.list_items_for_run(run.id)) == 3
        assert await repo.count_items([ReconciliationItem.run_id == run.id]) == 3
        assert await repo.count_items_by_status([ReconciliationItem.run_id == run.id]) == {
            "matched": 2,
            "duplicate": 1,
        }

    async def test_list_items_with_intents_outer_join(self, db_session, seed, make_intent):
        """Test items without an intent are returned with None."""
        intent = await seed(make_intent())
        repo = ReconciliationRepository(db_session)
        run = await repo.create_run(WINDOW_START, WINDOW_END)
        await repo.add_items(run, [
            ReconciliationItem(provider="mpesa", status="matched", payment_intent_id=intent.id),
            ReconciliationItem(provider="mpesa", status="missing_internal_intent"),
        ])

        results = await repo.list_items_with_intents([ReconciliationItem.run_id == run.id], 0, 10)

        by_status = {item.status: joined for item, joined in results}
        assert by_status["matched"].id == intent.id
        assert by_status["missing_internal_intent"] is None


class TestLegalDocumentOwnershipRepository:
    """Tests for LegalDocumentOwnershipRepository."""

    async def test_create_and_exists(self, db_session):
        """Test ownership lookup by user and document."""
        repo = LegalDocumentOwnershipRepository(db_session)
        assert await repo.exists("user-1", "doc-1") is False

        await repo.create("user-1", "doc-1", Decimal("250"), "KES", payment_reference="RCPT")

        assert await repo.exists("user-1", "doc-1") is True
        assert await repo.exists("user-2", "doc-1") is False


class TestDatabaseUrl:
    """Tests for database URL resolution."""

    def test_postgres_urls_use_asyncpg(self, monkeypatch):
        """Test plain Postgres URLs are switched to the asyncpg driver."""
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/payments")
        assert get_database_url() == "postgresql+asyncpg://u:p@db/payments"

        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/payments")
        assert get_database_url() == "postgresql+asyncpg://u:p@db/payments"

    def test_default_is_sqlite(self, monkeypatch):
        """Test the default database when DATABASE_URL is unset."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url().startswith("sqlite+aiosqlite://")


class TestEngineSelection:
    """Tests for how engines are pooled per database kind."""

    def test_is_sqlite_memory(self):
        assert is_sqlite_memory("sqlite+aiosqlite:///:memory:")
        assert is_sqlite_memory("sqlite+aiosqlite://")
        assert not is_sqlite_memory("sqlite+aiosqlite:///./payments.db")
        assert not is_sqlite_memory("postgresql+asyncpg://u:p@db/payments")

    async def test_memory_database_shares_one_connection(self):
        engine = create_async_engine(database_url="sqlite+aiosqlite:///:memory:")
        assert isinstance(engine.pool, StaticPool)
        await engine.dispose()

    async def test_file_database_is_pooled(self, tmp_path):
        """Test a file database gets separate connections so transactions are isolated."""
        engine = create_async_engine(database_url=f"sqlite+aiosqlite:///{tmp_path / 'pooled.db'}")
        assert not isinstance(engine.pool, StaticPool)
        await engine.dispose()


class TestDatabaseManager:
    """Tests for DatabaseManager."""

    async def test_lifecycle(self, tmp_path):
        """Test initialize creates the tables and shutdown releases the factory."""
        manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'managed.db'}")
        with pytest.raises(RuntimeError):
            manager.session_factory

        session_factory = await manager.initialize()

        assert manager.session_factory is session_factory
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(PaymentIntent))
        assert count == 0

        await manager.shutdown()
        with pytest.raises(RuntimeError):
            manager.session_factory
