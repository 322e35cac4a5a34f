"""
Database Package for the Conflict Check System

This package provides:
- SQLAlchemy ORM models for cases, lawyers and check history
- Session provider (FastAPI dependency and session_scope)
- Repository pattern for data access (the case store used by conflict checks)
- Query timing and per-operation statistics
"""

from database.models import (
    Base,
    Case,
    CaseLawyer,
    ConflictCheck,
    User,
    encode_affiliates,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    SqlCaseRepository,
    RepositoryError,
    CaseNotFoundError,
    DuplicateEntityError,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
)

__all__ = [
    # Models
    'Base',
    'Case',
    'CaseLawyer',
    'ConflictCheck',
    'User',
    'encode_affiliates',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Repositories
    'SqlCaseRepository',
    'RepositoryError',
    'CaseNotFoundError',
    'DuplicateEntityError',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
]
