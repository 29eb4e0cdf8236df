"""phase_engine_schema

Baseline migration for the phase engine tables.
For existing databases, stamp this revision instead of running it:
    alembic stamp 3b9f1c2d7e40

Revision ID: 3b9f1c2d7e40
Revises:
Create Date: 2026-10-19 09:12:40.512903

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "3b9f1c2d7e40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the full schema.

    This executes schema.sql which uses CREATE TABLE IF NOT EXISTS,
    so it is safe to run against an existing database.
    """
    schema_path = Path(__file__).resolve().parents[2] / "phase_engine" / "db" / "schema.sql"
    schema_sql = schema_path.read_text()
    # Execute each statement individually (op.execute doesn't support executescript)
    for statement in schema_sql.split(";"):
        # Strip comment lines before checking if there's real SQL
        lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        cleaned = "\n".join(lines).strip()
        if cleaned:
            op.execute(sa.text(cleaned))


def downgrade() -> None:
    tables = [
        "performance_history",
        "phase3_results",
        "progress_analyses",
        "phase1_analyses",
        "legacy_results",
        "exam_results",
        "student_phase_progress",
        "phase_authorizations",
        "users",
    ]
    for table in tables:
        op.drop_table(table)
