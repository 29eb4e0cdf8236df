"""
phase_records.py - Database helper queries for the phase engine

Provides upsert/fetch functions for:
- phase_authorizations
- student_phase_progress
- exam_results / legacy_results
- phase1_analyses / progress_analyses / phase3_results
- performance_history
- users (roster view)

All ids are deterministic, so every write is an upsert on ``id``.
"""

import json
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import aiosqlite


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ══════════════════════════════════════════════════════════════════════════════
# PHASE AUTHORIZATIONS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_authorization(db: aiosqlite.Connection, record: Dict[str, Any]) -> None:
    """Insert or refresh an authorization record. created_at survives updates."""
    await db.execute(
        """INSERT INTO phase_authorizations
           (id, grade_id, grade_name, phase, subject, authorized, authorized_by,
            authorized_at, institution_id, campus_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               grade_name = excluded.grade_name,
               authorized = excluded.authorized,
               authorized_by = excluded.authorized_by,
               authorized_at = excluded.authorized_at,
               institution_id = excluded.institution_id,
               campus_id = excluded.campus_id,
               updated_at = excluded.updated_at""",
        (
            record["id"],
            record["grade_id"],
            record.get("grade_name"),
            record["phase"],
            record.get("subject"),
            1 if record.get("authorized") else 0,
            record.get("authorized_by"),
            record.get("authorized_at"),
            record.get("institution_id"),
            record.get("campus_id"),
            record["created_at"],
            record["updated_at"],
        )
    )
    await db.commit()


async def set_authorization_flag(
    db: aiosqlite.Connection,
    auth_id: str,
    authorized: bool,
    updated_at: str
) -> int:
    """Flip the authorized flag in place. Returns the number of rows touched."""
    cursor = await db.execute(
        "UPDATE phase_authorizations SET authorized = ?, updated_at = ? WHERE id = ?",
        (1 if authorized else 0, updated_at, auth_id)
    )
    await db.commit()
    return cursor.rowcount


async def get_authorization(db: aiosqlite.Connection, auth_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM phase_authorizations WHERE id = ?",
        (auth_id,)
    )
    row = await cursor.fetchone()
    if not row:
        return None
    return _authorization_row(row)


async def list_grade_authorizations(db: aiosqlite.Connection, grade_id: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM phase_authorizations WHERE grade_id = ? ORDER BY id",
        (grade_id,)
    )
    rows = await cursor.fetchall()
    return [_authorization_row(r) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# STUDENT PHASE PROGRESS
# ══════════════════════════════════════════════════════════════════════════════

async def get_progress(db: aiosqlite.Connection, progress_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM student_phase_progress WHERE id = ?",
        (progress_id,)
    )
    row = await cursor.fetchone()
    if not row:
        return None
    return _row_to_dict(row, parse_json_fields=['subjects_completed', 'subjects_in_progress'])


async def upsert_progress(db: aiosqlite.Connection, record: Dict[str, Any]) -> None:
    await db.execute(
        """INSERT INTO student_phase_progress
           (id, student_id, grade_id, phase, status, subjects_completed,
            subjects_in_progress, overall_score, completed_at, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               grade_id = excluded.grade_id,
               status = excluded.status,
               subjects_completed = excluded.subjects_completed,
               subjects_in_progress = excluded.subjects_in_progress,
               overall_score = excluded.overall_score,
               completed_at = excluded.completed_at,
               updated_at = excluded.updated_at""",
        (
            record["id"],
            record["student_id"],
            record["grade_id"],
            record["phase"],
            record["status"],
            json.dumps(record.get("subjects_completed", [])),
            json.dumps(record.get("subjects_in_progress", [])),
            record.get("overall_score"),
            record.get("completed_at"),
            record["created_at"],
            record["updated_at"],
        )
    )
    await db.commit()


async def list_grade_progress(db: aiosqlite.Connection, grade_id: str, phase: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM student_phase_progress WHERE grade_id = ? AND phase = ?",
        (grade_id, phase)
    )
    rows = await cursor.fetchall()
    return [
        _row_to_dict(r, parse_json_fields=['subjects_completed', 'subjects_in_progress'])
        for r in rows
    ]


# ══════════════════════════════════════════════════════════════════════════════
# EXAM RESULTS
# ══════════════════════════════════════════════════════════════════════════════

def exam_result_id(student_id: str, phase_folder: str, exam_id: str) -> str:
    return f"{student_id}/{phase_folder}/{exam_id}"


async def upsert_exam_result(
    db: aiosqlite.Connection,
    student_id: str,
    phase_folder: str,
    exam_id: str,
    data: Dict[str, Any]
) -> str:
    """Write an exam attempt into its (student, folder) partition. Returns the row id."""
    now = utc_now()
    row_id = exam_result_id(student_id, phase_folder, exam_id)
    await db.execute(
        """INSERT INTO exam_results
           (id, student_id, phase_folder, exam_id, data, is_placeholder, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, 0, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               data = excluded.data,
               is_placeholder = 0,
               updated_at = excluded.updated_at""",
        (row_id, student_id, phase_folder, exam_id, json.dumps(data, default=str), now, now)
    )
    await db.commit()
    return row_id


async def insert_placeholder(
    db: aiosqlite.Connection,
    student_id: str,
    phase_folder: str,
    marker_id: str
) -> bool:
    """Create the folder marker if absent. Returns True when a row was created."""
    now = utc_now()
    cursor = await db.execute(
        """INSERT INTO exam_results
           (id, student_id, phase_folder, exam_id, data, is_placeholder, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, 1, ?, ?)
           ON CONFLICT(id) DO NOTHING""",
        (
            exam_result_id(student_id, phase_folder, marker_id),
            student_id,
            phase_folder,
            marker_id,
            json.dumps({"placeholder": True, "createdAt": now}),
            now,
            now,
        )
    )
    await db.commit()
    return cursor.rowcount == 1


async def list_exam_results(
    db: aiosqlite.Connection,
    student_id: str,
    phase_folder: str,
    include_placeholders: bool = False
) -> List[Dict[str, Any]]:
    """Get every document in one (student, folder) partition, ordered by exam id."""
    sql = "SELECT * FROM exam_results WHERE student_id = ? AND phase_folder = ?"
    if not include_placeholders:
        sql += " AND is_placeholder = 0"
    cursor = await db.execute(sql + " ORDER BY exam_id", (student_id, phase_folder))
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=['data']) for r in rows]


async def get_legacy_results(db: aiosqlite.Connection, student_id: str) -> Dict[str, Any]:
    """Get the legacy flat results document (exam id -> exam dict), or {}."""
    cursor = await db.execute(
        "SELECT data FROM legacy_results WHERE id = ?",
        (student_id,)
    )
    row = await cursor.fetchone()
    if not row:
        return {}
    parsed = _row_to_dict(row, parse_json_fields=['data'])["data"]
    return parsed if isinstance(parsed, dict) else {}


async def upsert_legacy_results(db: aiosqlite.Connection, student_id: str, data: Dict[str, Any]) -> None:
    await db.execute(
        """INSERT INTO legacy_results (id, data, updated_at) VALUES (?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at""",
        (student_id, json.dumps(data, default=str), utc_now())
    )
    await db.commit()


# ══════════════════════════════════════════════════════════════════════════════
# ANALYSES
# ══════════════════════════════════════════════════════════════════════════════

async def save_phase1_analysis(db, analysis_id: str, student_id: str, subject: str,
                               data: Dict[str, Any], analyzed_at: str) -> None:
    await _save_document(db, "phase1_analyses", "analyzed_at",
                         analysis_id, student_id, subject, data, analyzed_at)


async def get_phase1_analysis(db, analysis_id: str) -> Optional[Dict[str, Any]]:
    return await _get_document(db, "phase1_analyses", analysis_id)


async def save_progress_analysis(db, analysis_id: str, student_id: str, subject: str,
                                 data: Dict[str, Any], analyzed_at: str) -> None:
    await _save_document(db, "progress_analyses", "analyzed_at",
                         analysis_id, student_id, subject, data, analyzed_at)


async def get_progress_analysis(db, analysis_id: str) -> Optional[Dict[str, Any]]:
    return await _get_document(db, "progress_analyses", analysis_id)


async def save_phase3_result(db, result_id: str, student_id: str, subject: str,
                             data: Dict[str, Any], completed_at: str) -> None:
    await _save_document(db, "phase3_results", "completed_at",
                         result_id, student_id, subject, data, completed_at)


async def get_phase3_result(db, result_id: str) -> Optional[Dict[str, Any]]:
    return await _get_document(db, "phase3_results", result_id)


# ══════════════════════════════════════════════════════════════════════════════
# PERFORMANCE HISTORY
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_performance_history(db: aiosqlite.Connection, record: Dict[str, Any]) -> None:
    await db.execute(
        """INSERT INTO performance_history
           (id, student_id, subject, phase, score, icfes_score, topic_performance, completed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               score = excluded.score,
               icfes_score = excluded.icfes_score,
               topic_performance = excluded.topic_performance,
               completed_at = excluded.completed_at""",
        (
            record["id"],
            record["student_id"],
            record["subject"],
            record["phase"],
            record["score"],
            record.get("icfes_score"),
            json.dumps(record.get("topic_performance", [])),
            record["completed_at"],
        )
    )
    await db.commit()


async def list_performance_history(db: aiosqlite.Connection, student_id: str, subject: str) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM performance_history WHERE student_id = ? AND subject = ?",
        (student_id, subject)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=['topic_performance']) for r in rows]


# ══════════════════════════════════════════════════════════════════════════════
# USERS
# ══════════════════════════════════════════════════════════════════════════════

async def upsert_user(db: aiosqlite.Connection, user: Dict[str, Any]) -> None:
    await db.execute(
        """INSERT INTO users (id, name, role, grade_id, institution_id, campus_id, is_active, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
               name = excluded.name,
               role = excluded.role,
               grade_id = excluded.grade_id,
               institution_id = excluded.institution_id,
               campus_id = excluded.campus_id,
               is_active = excluded.is_active""",
        (
            user["id"],
            user.get("name"),
            user.get("role", "student"),
            user.get("grade_id"),
            user.get("institution_id"),
            user.get("campus_id"),
            0 if user.get("is_active") is False else 1,
            user.get("created_at") or utc_now(),
        )
    )
    await db.commit()


async def get_user(db: aiosqlite.Connection, user_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = await cursor.fetchone()
    if not row:
        return None
    user = dict(row)
    user["is_active"] = bool(user.get("is_active"))
    return user


async def list_students(
    db: aiosqlite.Connection,
    institution_id: str,
    campus_id: str,
    grade_id: str,
    is_active: Optional[bool] = True
) -> List[Dict[str, Any]]:
    sql = """SELECT * FROM users
             WHERE role = 'student' AND institution_id = ? AND campus_id = ? AND grade_id = ?"""
    params: list = [institution_id, campus_id, grade_id]
    if is_active is not None:
        sql += " AND is_active = ?"
        params.append(1 if is_active else 0)
    cursor = await db.execute(sql + " ORDER BY id", params)
    rows = await cursor.fetchall()
    users = []
    for row in rows:
        user = dict(row)
        user["is_active"] = bool(user.get("is_active"))
        users.append(user)
    return users


# ══════════════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════════

async def _save_document(db, table: str, time_column: str, doc_id: str, student_id: str,
                         subject: str, data: Dict[str, Any], stamp: str) -> None:
    # table/time_column are module constants, never caller input
    await db.execute(
        f"""INSERT INTO {table} (id, student_id, subject, data, {time_column})
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                {time_column} = excluded.{time_column}""",
        (doc_id, student_id, subject, json.dumps(data, default=str), stamp)
    )
    await db.commit()


async def _get_document(db, table: str, doc_id: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(f"SELECT data FROM {table} WHERE id = ?", (doc_id,))
    row = await cursor.fetchone()
    if not row:
        return None
    return _row_to_dict(row, parse_json_fields=['data'])["data"]


def _authorization_row(row) -> Dict[str, Any]:
    result = dict(row)
    result["authorized"] = bool(result.get("authorized"))
    return result


def _row_to_dict(row: aiosqlite.Row, parse_json_fields: List[str] = None) -> Dict[str, Any]:
    """Convert a database row to a dictionary, optionally parsing JSON fields."""
    if row is None:
        return None

    result = dict(row)

    if parse_json_fields:
        for field in parse_json_fields:
            if field in result and result[field]:
                try:
                    result[field] = json.loads(result[field])
                except (json.JSONDecodeError, TypeError):
                    pass  # Keep original value if JSON parsing fails

    return result
