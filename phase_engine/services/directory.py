"""User and roster lookups consumed by ranking and the phase status façade.

The engine only needs two reads from the user directory, so it depends on the
StudentDirectory protocol. SqlStudentDirectory serves them from the local
``users`` table and retries transient store errors.
"""

import logging
import sqlite3
from typing import List, Optional, Protocol

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from phase_engine.config import settings
from phase_engine.db import phase_records as pr
from phase_engine.models.phase import StudentRecord

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OSError, sqlite3.OperationalError, asyncpg.PostgresConnectionError)


class StudentDirectory(Protocol):
    async def get_user_by_id(self, user_id: str) -> Optional[StudentRecord]:
        ...

    async def get_filtered_students(
        self,
        institution_id: str,
        campus_id: str,
        grade_id: str,
        is_active: Optional[bool] = True,
    ) -> List[StudentRecord]:
        ...


_directory_retry = retry(
    stop=stop_after_attempt(settings.directory_retry_attempts),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    before_sleep=lambda retry_state: logger.warning(
        "Directory read failed (attempt %d), retrying: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    ),
    reraise=True,
)


class SqlStudentDirectory:
    def __init__(self, db):
        self.db = db

    @_directory_retry
    async def get_user_by_id(self, user_id: str) -> Optional[StudentRecord]:
        row = await pr.get_user(self.db, user_id)
        return StudentRecord(**row) if row else None

    @_directory_retry
    async def get_filtered_students(
        self,
        institution_id: str,
        campus_id: str,
        grade_id: str,
        is_active: Optional[bool] = True,
    ) -> List[StudentRecord]:
        rows = await pr.list_students(self.db, institution_id, campus_id, grade_id, is_active)
        return [StudentRecord(**r) for r in rows]
