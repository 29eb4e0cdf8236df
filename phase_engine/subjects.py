"""Closed set of subjects and phases, plus the alias table that maps the many
spellings found in stored results onto a canonical subject.

The alias table lives in subjects.yaml and is validated when this module is
imported: an inconsistent table stops the process instead of letting an
unnormalized subject string leak into scoring.
"""

import unicodedata
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml

from phase_engine.errors import InvalidPhaseError, SubjectConfigError, UnknownSubjectError

SUBJECTS_CONFIG_PATH = Path(__file__).parent / "subjects.yaml"


class Subject(str, Enum):
    MATEMATICAS = "Matemáticas"
    LENGUAJE = "Lenguaje"
    CIENCIAS_SOCIALES = "Ciencias Sociales"
    BIOLOGIA = "Biologia"
    QUIMICA = "Quimica"
    FISICA = "Física"
    INGLES = "Inglés"


class Phase(str, Enum):
    FIRST = "first"
    SECOND = "second"
    THIRD = "third"


class PhaseStatus(str, Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


ALL_SUBJECTS: Tuple[Subject, ...] = tuple(Subject)
ALL_PHASES: Tuple[Phase, ...] = tuple(Phase)
TOTAL_SUBJECTS = len(ALL_SUBJECTS)

_PHASE_ALIASES = {
    "phase1": Phase.FIRST,
    "phase2": Phase.SECOND,
    "phase3": Phase.THIRD,
}


def fold(text: str) -> str:
    """Lower-case, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.lower().split())


def _load_config(path: Path) -> dict:
    with open(path, encoding="utf-8") as fh:
        return yaml.safe_load(fh)


def _build_tables(config: dict):
    """Validate the raw YAML config and build lookup tables from it."""
    by_name = {s.value: s for s in Subject}
    aliases: Dict[str, Subject] = {}
    codes: Dict[str, Subject] = {}
    topic_codes: Dict[Subject, Dict[str, str]] = {}

    entries = config.get("subjects") or []
    seen = set()
    for entry in entries:
        name = entry.get("name")
        if name not in by_name:
            raise SubjectConfigError(f"Unknown subject in config: {name!r}")
        subject = by_name[name]
        if subject in seen:
            raise SubjectConfigError(f"Subject listed twice: {name!r}")
        seen.add(subject)

        code = str(entry.get("code", "")).upper()
        if not code or code in codes:
            raise SubjectConfigError(f"Missing or duplicate code for {name!r}: {code!r}")
        codes[code] = subject

        # The canonical name is always an alias of itself
        for alias in [name, *(entry.get("aliases") or [])]:
            key = fold(str(alias))
            owner = aliases.get(key)
            if owner is not None and owner is not subject:
                raise SubjectConfigError(
                    f"Alias {alias!r} maps to both {owner.value!r} and {name!r}"
                )
            aliases[key] = subject

        topic_codes[subject] = {
            fold(topic): str(tc) for topic, tc in (entry.get("topic_codes") or {}).items()
        }

    missing = set(Subject) - seen
    if missing:
        raise SubjectConfigError(
            f"Subjects missing from config: {sorted(s.value for s in missing)}"
        )

    naturales = set()
    for name in config.get("naturales") or []:
        if name not in by_name:
            raise SubjectConfigError(f"Unknown naturales subject: {name!r}")
        naturales.add(by_name[name])

    folders: Dict[Phase, List[str]] = {}
    raw_folders = config.get("phase_folders") or {}
    for phase in Phase:
        names = raw_folders.get(phase.value) or []
        if not names:
            raise SubjectConfigError(f"No result folders configured for phase {phase.value!r}")
        folders[phase] = [str(n) for n in names]

    return aliases, codes, topic_codes, frozenset(naturales), folders


(
    SUBJECT_ALIASES,
    SUBJECT_CODES,
    _TOPIC_CODES,
    NATURALES,
    PHASE_FOLDERS,
) = _build_tables(_load_config(SUBJECTS_CONFIG_PATH))


def try_normalize_subject(name: Optional[str]) -> Optional[Subject]:
    if isinstance(name, Subject):
        return name
    if not name:
        return None
    return SUBJECT_ALIASES.get(fold(str(name)))


def normalize_subject(name: Union[str, Subject]) -> Subject:
    """Resolve any known spelling of a subject to its canonical member.

    Raises UnknownSubjectError for names that are not in the alias table.
    """
    subject = try_normalize_subject(name)
    if subject is None:
        raise UnknownSubjectError(str(name))
    return subject


def subject_from_exam_id(exam_id: str) -> Optional[Subject]:
    """Detect the subject from an exam id prefix such as 'MA-2024-01'."""
    upper = (exam_id or "").upper()
    for code, subject in SUBJECT_CODES.items():
        if upper.startswith(code):
            return subject
    return None


def topic_code(subject: Subject, topic: str) -> str:
    known = _TOPIC_CODES.get(subject, {})
    return known.get(fold(topic)) or topic[:2].upper()


def parse_phase(value: Union[str, Phase]) -> Phase:
    if isinstance(value, Phase):
        return value
    key = str(value or "").strip().lower()
    if key in _PHASE_ALIASES:
        return _PHASE_ALIASES[key]
    try:
        return Phase(key)
    except ValueError:
        raise InvalidPhaseError(str(value)) from None


def previous_phase(phase: Phase) -> Optional[Phase]:
    idx = ALL_PHASES.index(phase)
    return ALL_PHASES[idx - 1] if idx > 0 else None


def next_phase(phase: Phase) -> Optional[Phase]:
    idx = ALL_PHASES.index(phase)
    return ALL_PHASES[idx + 1] if idx + 1 < len(ALL_PHASES) else None


def phase_folders(phase: Phase) -> List[str]:
    """Folder names for a phase, canonical first."""
    return list(PHASE_FOLDERS[phase])


def canonical_folder(phase: Phase) -> str:
    return PHASE_FOLDERS[phase][0]


def phase_label(phase: Phase) -> str:
    """Human-readable Spanish ordinal used in access messages."""
    return {Phase.FIRST: "primera", Phase.SECOND: "segunda", Phase.THIRD: "tercera"}[phase]
