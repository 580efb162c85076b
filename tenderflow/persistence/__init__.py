"""Workflow state storage backends."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from ..config import TenderflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import DueTimer
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None


def _postgres(database_url: str) -> WorkflowRepository:
    if PostgresWorkflowRepository is None:
        raise RuntimeError("Postgres support requires the asyncpg package")
    return PostgresWorkflowRepository(database_url)


def _sqlite(database_url: str) -> WorkflowRepository:
    return SQLiteWorkflowRepository(database_url.split("://", 1)[1])


_BACKENDS: Dict[str, Callable[[str], WorkflowRepository]] = {
    "sqlite": _sqlite,
    "postgres": _postgres,
    "postgresql": _postgres,
}


def get_repository(
    database_url: Optional[str] = None, config: Optional[TenderflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository, creating it on first use.

    Passing ``database_url`` or ``config`` always builds a new backend and
    makes it the shared one. Without a configured URL the state lives in
    memory only.
    """
    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    # load_config already folds in TENDERFLOW_DATABASE_URL / DATABASE_URL
    database_url = database_url or (config or load_config()).database_url
    if not database_url:
        _repository_instance = InMemoryWorkflowRepository()
        return _repository_instance

    scheme = database_url.split("://", 1)[0].lower()
    factory = _BACKENDS.get(scheme)
    if factory is None or "://" not in database_url:
        raise ValueError(f"Unsupported database backend: {database_url}")
    _repository_instance = factory(database_url)
    return _repository_instance


__all__ = [
    "DueTimer",
    "InMemoryWorkflowRepository",
    "PostgresWorkflowRepository",
    "SQLiteWorkflowRepository",
    "WorkflowRepository",
    "get_repository",
]
