"""Persistence layer for hrflow workflows and business records."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..config import HrflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import HistoryEntry, WorkflowInstance, WorkflowStep
from .postgres import PostgresWorkflowRepository
from .repository import EntityRepository, Repository, WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"

_repository_instance: Repository | None = None
_repository_url: Optional[str] = None


def resolve_database_url(
    database_url: Optional[str] = None, config: Optional[HrflowConfig] = None
) -> str:
    """Pick the database URL: argument, ``HRFLOW_DATABASE_URL``, ``DATABASE_URL``, config.

    Returns ``memory://`` when none of them names a database.
    """
    if database_url:
        return database_url
    env_url = os.getenv("HRFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    config = config or load_config()
    return getattr(config, "database_url", None) or MEMORY_URL


def _open_repository(database_url: str) -> Repository:
    if database_url == MEMORY_URL:
        return InMemoryWorkflowRepository()
    if database_url.startswith("sqlite://"):
        return SQLiteWorkflowRepository(database_url.replace("sqlite://", "", 1))
    if database_url.startswith(("postgres://", "postgresql://")):
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url.split('://', 1)[0]}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[HrflowConfig] = None
) -> Repository:
    """Return the shared repository for the resolved database URL.

    With no arguments the repository opened last is returned as is. Otherwise
    the URL is resolved as in ``resolve_database_url`` and the shared
    repository is reused when it was opened for that same URL; a different
    URL opens a new repository, which becomes the shared one. Every backend
    also serves as the entity repository so one transaction covers both.
    """

    global _repository_instance, _repository_url
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    url = resolve_database_url(database_url, config)
    if _repository_instance is not None and url == _repository_url:
        return _repository_instance

    repository = _open_repository(url)
    logger.info(f"Opened {type(repository).__name__} ({url.split('://', 1)[0]} backend)")
    _repository_instance, _repository_url = repository, url
    return repository


__all__ = [
    "EntityRepository",
    "HistoryEntry",
    "WorkflowInstance",
    "WorkflowStep",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "Repository",
    "MEMORY_URL",
    "get_repository",
    "resolve_database_url",
]
