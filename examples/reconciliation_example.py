"""
Example reconciliation walkthrough against an in-memory database.

This module seeds a handful of payment intents and provider transactions,
runs a reconciliation, resolves one gap manually and runs a healing pass.
Each step prints what an operator would see.
"""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

from payments_reconciler.collaborators import SimulatedCollaborators
from payments_reconciler.config import HealingSettings
from payments_reconciler.database import (
    Base,
    PaymentIntent,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    ProviderTransaction,
    create_async_engine,
    create_session_factory,
)
from payments_reconciler.reconciliation import (
    ManualReconcileRequest,
    ReconciliationRequest,
    ReportGenerator,
)
from payments_reconciler.services import PaymentServices

DAY = datetime(2025, 3, 1)


async def seed(session_factory):
    """Three intents and three provider transactions with one of each kind of gap."""
    paid_at = DAY + timedelta(hours=12)
    async with session_factory() as session:
        session.add_all([
            # Settled and finalized: should match
            PaymentIntent(
                provider=PaymentProvider.MPESA.value,
                purpose=PaymentPurpose.PUBLIC_PRODUCT_PURCHASE.value,
                status=PaymentStatus.SUCCESS.value,
                user_id="user-1",
                content_product_id="product-1",
                amount=Decimal("500"),
                currency="KES",
                checkout_request_id="ws_CO_001",
                provider_paid_at=paid_at,
                is_finalized=True,
            ),
            ProviderTransaction(
                provider=PaymentProvider.MPESA.value,
                provider_transaction_id="QAB1",
                reference="ws_CO_001",
                status="success",
                amount=Decimal("500"),
                currency="KES",
                paid_at=paid_at,
            ),
            # Provider settled less than the intent asked for
            PaymentIntent(
                provider=PaymentProvider.PAYSTACK.value,
                purpose=PaymentPurpose.PUBLIC_PRODUCT_SUBSCRIPTION.value,
                status=PaymentStatus.SUCCESS.value,
                user_id="user-2",
                content_product_id="product-2",
                amount=Decimal("1200"),
                currency="KES",
                provider_reference="ps_ref_002",
                provider_paid_at=paid_at,
                is_finalized=True,
            ),
            ProviderTransaction(
                provider=PaymentProvider.PAYSTACK.value,
                provider_transaction_id="PS-2",
                reference="ps_ref_002",
                status="success",
                amount=Decimal("1000"),
                currency="KES",
                paid_at=paid_at,
            ),
            # Callback never arrived, so the intent is still pending
            PaymentIntent(
                id="pending-intent",
                provider=PaymentProvider.MPESA.value,
                purpose=PaymentPurpose.PUBLIC_PRODUCT_PURCHASE.value,
                status=PaymentStatus.PENDING.value,
                user_id="user-3",
                content_product_id="product-1",
                amount=Decimal("500"),
                currency="KES",
                checkout_request_id="ws_CO_003",
                created_at=paid_at,
            ),
            ProviderTransaction(
                provider=PaymentProvider.MPESA.value,
                provider_transaction_id="QAB3",
                reference="ws_CO_003",
                status="success",
                amount=Decimal("500"),
                currency="KES",
                paid_at=paid_at,
            ),
        ])
        await session.commit()


async def run():
    engine = create_async_engine(database_url="sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = create_session_factory(engine)
    collaborators = SimulatedCollaborators()
    services = PaymentServices.build(
        session_factory,
        collaborators,
        settings=HealingSettings(enabled=False, min_age=timedelta(0)),
    )
    await seed(session_factory)

    # =========================================================================
    # Automatic reconciliation
    # =========================================================================
    summary = await services.reconciliation.run_reconciliation(
        ReconciliationRequest(from_utc=DAY, to_utc=DAY + timedelta(days=1)),
        performed_by_user_id="ops-1",
    )
    print(ReportGenerator(summary).to_detailed_text())

    # =========================================================================
    # Manual override for the pending intent
    # =========================================================================
    run_id = await services.reconciliation.manual_reconcile(
        ManualReconcileRequest(
            payment_intent_id="pending-intent",
            provider=PaymentProvider.MPESA,
            amount=Decimal("500"),
            currency="KES",
            reference="ws_CO_003",
            provider_transaction_id="QAB3",
            paid_at_utc=DAY + timedelta(hours=12),
            notes="Customer shared M-Pesa SMS",
        ),
        performed_by_user_id="ops-1",
    )
    print(f"\nManual reconciliation run: {run_id}")
    print(f"Collaborator calls: {collaborators.summary()}")

    # =========================================================================
    # Healing pass
    # =========================================================================
    result = await services.healing.run()
    print(f"\nHealing: {result.model_dump_json(indent=2)}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(run())
