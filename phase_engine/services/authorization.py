"""Administrator-controlled gates that open a phase for a grade.

Records are keyed ``<grade_id>_<phase>[_<subject>]`` so authorizing twice
updates the same row, and revoking only flips the flag, keeping the history of
who opened the phase and when.
"""

import logging
from typing import List, Optional, Union

from phase_engine.db import phase_records as pr
from phase_engine.models.phase import PhaseAuthorization
from phase_engine.models.result import Result, failure, success
from phase_engine.subjects import ALL_PHASES, Phase, Subject, normalize_subject, parse_phase

logger = logging.getLogger(__name__)


def authorization_id(grade_id: str, phase: Phase, subject: Optional[Subject] = None) -> str:
    auth_id = f"{grade_id}_{phase.value}"
    if subject is not None:
        auth_id += f"_{subject.value}"
    return auth_id


def _to_model(row: dict) -> PhaseAuthorization:
    return PhaseAuthorization(**row)


class PhaseAuthorizationStore:
    def __init__(self, db):
        self.db = db

    async def authorize_phase(
        self,
        grade_id: str,
        grade_name: str,
        phase: Union[str, Phase],
        admin_id: str,
        institution_id: Optional[str] = None,
        campus_id: Optional[str] = None,
        subject: Optional[Union[str, Subject]] = None,
    ) -> Result[PhaseAuthorization]:
        try:
            phase = parse_phase(phase)
            subject = normalize_subject(subject) if subject else None
        except ValueError as exc:
            return failure(str(exc))

        try:
            auth_id = authorization_id(grade_id, phase, subject)
            now = pr.utc_now()
            existing = await pr.get_authorization(self.db, auth_id)
            record = {
                "id": auth_id,
                "grade_id": grade_id,
                "grade_name": grade_name,
                "phase": phase.value,
                "subject": subject.value if subject else None,
                "authorized": True,
                "authorized_by": admin_id,
                "authorized_at": now,
                "institution_id": institution_id,
                "campus_id": campus_id,
                "created_at": existing["created_at"] if existing else now,
                "updated_at": now,
            }
            await pr.upsert_authorization(self.db, record)
            logger.info("Phase %s authorized for grade %s by %s", phase.value, grade_name or grade_id, admin_id)
            return success(_to_model(record))
        except Exception as e:
            logger.error("Error authorizing phase %s for grade %s: %s", phase.value, grade_id, e)
            return failure(f"Error authorizing phase: {e}")

    async def revoke_phase_authorization(
        self,
        grade_id: str,
        phase: Union[str, Phase],
        subject: Optional[Union[str, Subject]] = None,
    ) -> Result[Optional[PhaseAuthorization]]:
        """Set authorized=False on the record. A missing record is left missing."""
        try:
            phase = parse_phase(phase)
            subject = normalize_subject(subject) if subject else None
        except ValueError as exc:
            return failure(str(exc))

        try:
            auth_id = authorization_id(grade_id, phase, subject)
            touched = await pr.set_authorization_flag(self.db, auth_id, False, pr.utc_now())
            if not touched:
                logger.info("No authorization %s to revoke", auth_id)
                return success(None)
            logger.info("Phase %s authorization revoked for grade %s", phase.value, grade_id)
            row = await pr.get_authorization(self.db, auth_id)
            return success(_to_model(row) if row else None)
        except Exception as e:
            logger.error("Error revoking authorization %s_%s: %s", grade_id, phase.value, e)
            return failure(f"Error revoking authorization: {e}")

    async def get_authorization(
        self,
        grade_id: str,
        phase: Union[str, Phase],
        subject: Optional[Union[str, Subject]] = None,
    ) -> Result[Optional[PhaseAuthorization]]:
        try:
            phase = parse_phase(phase)
            subject = normalize_subject(subject) if subject else None
        except ValueError as exc:
            return failure(str(exc))

        try:
            row = await pr.get_authorization(self.db, authorization_id(grade_id, phase, subject))
            return success(_to_model(row) if row else None)
        except Exception as e:
            logger.error("Error reading authorization %s_%s: %s", grade_id, phase.value, e)
            return failure(f"Error reading authorization: {e}")

    async def is_phase_authorized(
        self,
        grade_id: str,
        phase: Union[str, Phase],
        subject: Optional[Union[str, Subject]] = None,
    ) -> Result[bool]:
        """A subject-level record, when present, overrides the grade-level one."""
        if subject:
            specific = await self.get_authorization(grade_id, phase, subject)
            if not specific.success:
                return failure(specific.error)
            if specific.data is not None:
                return success(specific.data.authorized)

        general = await self.get_authorization(grade_id, phase)
        if not general.success:
            return failure(general.error)
        return success(general.data is not None and general.data.authorized)

    async def get_grade_authorizations(self, grade_id: str) -> Result[List[PhaseAuthorization]]:
        """All phase and subject records for a grade, ordered by phase then subject."""
        try:
            rows = await pr.list_grade_authorizations(self.db, grade_id)
        except Exception as e:
            logger.error("Error listing authorizations for grade %s: %s", grade_id, e)
            return failure(f"Error listing authorizations: {e}")

        phase_order = {p.value: i for i, p in enumerate(ALL_PHASES)}
        rows.sort(key=lambda r: (phase_order.get(r["phase"], len(phase_order)), r.get("subject") or ""))
        return success([_to_model(r) for r in rows])
