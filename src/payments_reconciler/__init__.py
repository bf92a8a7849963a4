# payments_reconciler package
__version__ = "0.1.0"

from .database import (
    PaymentIntent,
    ProviderTransaction,
    ReconciliationRun,
    ReconciliationItem,
    Invoice,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    ReconciliationStatus,
    ReconciliationReason,
    DatabaseManager,
)
from .errors import ReconcilerError, ValidationFailure, NotFound, DomainEffectFailure
from .config import HealingSettings
from .finalization import FinalizerService
from .invoicing import InvoiceNumberGenerator
from .healing import PaymentHealingService, HealingScheduler, HealingResult
from .services import PaymentServices

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    ReconciliationRequest,
    ReconciliationRunSummary,
    ManualReconcileRequest,
    ReportFilters,
    ReconciliationReportPage,
    Reconciler,
    ReportGenerator,
)
