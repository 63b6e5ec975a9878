"""
Shared fixtures.

Everything runs against the in-memory repository; no Google credentials
or files are needed. Settings are built explicitly so a local .env can't
change test behaviour.
"""

from decimal import Decimal

import pytest

from gull.audit import AuditLogger
from gull.config import LedgerSettings
from gull.orchestrator import LedgerEngine
from gull.services.storage import InMemoryAuditStorage, InMemoryLedgerRepository


PROJECT_ID = "project-1"
USER_ID = "user-1"
ADMIN_ID = "admin-1"


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        _env_file=None,
        default_balance=Decimal("0"),
        privileged_user_ids=ADMIN_ID,
        allow_negative_corrections=True,
        deductions_affect_balance=True,
    )


@pytest.fixture
def repository() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository(balances={USER_ID: Decimal("1000")})


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(repository, audit_logger, ledger_settings) -> LedgerEngine:
    return LedgerEngine(
        project_id=PROJECT_ID,
        user_id=USER_ID,
        repository=repository,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )


@pytest.fixture
def admin_engine(repository, audit_logger, ledger_settings) -> LedgerEngine:
    return LedgerEngine(
        project_id=PROJECT_ID,
        user_id=ADMIN_ID,
        repository=repository,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )
