"""Shared fixtures: an in-memory database built from schema.sql and an engine on top of it."""

import aiosqlite
import pytest

from phase_engine.db import phase_records as pr
from phase_engine.db.database import SCHEMA_PATH
from phase_engine.engine import build_engine
from phase_engine.subjects import ALL_SUBJECTS


@pytest.fixture
async def db():
    """Initialize an in-memory database for tests."""
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(SCHEMA_PATH.read_text())
    await conn.commit()
    yield conn
    await conn.close()


@pytest.fixture
def engine(db):
    return build_engine(db)


@pytest.fixture
def make_exam():
    """Build a stored-format exam document (camelCase keys, as historical data has)."""

    def _make(subject=None, percentage=None, details=None, **extra):
        doc = {"completed": True}
        if subject is not None:
            doc["subject"] = subject
        if percentage is not None:
            doc["score"] = {"overallPercentage": percentage}
        if details is not None:
            doc["questionDetails"] = [
                {"questionId": f"q{i}", "topic": topic, "isCorrect": ok}
                for i, (topic, ok) in enumerate(details)
            ]
        doc.update(extra)
        return doc

    return _make


@pytest.fixture
def add_student(db):
    async def _add(student_id, grade_id="g11", institution_id="inst1", campus_id="c1", is_active=True):
        await pr.upsert_user(db, {
            "id": student_id,
            "name": student_id.upper(),
            "grade_id": grade_id,
            "institution_id": institution_id,
            "campus_id": campus_id,
            "is_active": is_active,
        })

    return _add


@pytest.fixture
def complete_phase(engine):
    """Mark every subject of a phase completed for a student."""

    async def _complete(student_id, grade_id, phase):
        result = None
        for subject in ALL_SUBJECTS:
            result = await engine.tracker.update_student_phase_progress(student_id, grade_id, phase, subject, True)
            assert result.success, result.error
        return result.data

    return _complete
