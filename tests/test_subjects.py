"""Tests for the subject/phase tables and alias normalization."""

import pytest

from phase_engine.errors import InvalidPhaseError, SubjectConfigError, UnknownSubjectError
from phase_engine.subjects import (
    NATURALES,
    Phase,
    Subject,
    _build_tables,
    canonical_folder,
    next_phase,
    normalize_subject,
    parse_phase,
    phase_folders,
    previous_phase,
    subject_from_exam_id,
    topic_code,
    try_normalize_subject,
)


def _config(**overrides):
    config = {
        "subjects": [{"name": s.value, "code": s.value[:2].upper() + str(i)} for i, s in enumerate(Subject)],
        "naturales": ["Biologia", "Quimica", "Física"],
        "phase_folders": {"first": ["fase I"], "second": ["Fase II"], "third": ["fase III"]},
    }
    config.update(overrides)
    return config


class TestSubjectNormalization:
    def test_accents_and_casing(self):
        assert normalize_subject("matematicas") is Subject.MATEMATICAS
        assert normalize_subject("MATEMÁTICAS") is Subject.MATEMATICAS
        assert normalize_subject("  fisica ") is Subject.FISICA
        assert normalize_subject("Biología") is Subject.BIOLOGIA

    def test_english_aliases(self):
        assert normalize_subject("Physics") is Subject.FISICA
        assert normalize_subject("english") is Subject.INGLES
        assert normalize_subject("Social Studies") is Subject.CIENCIAS_SOCIALES

    def test_enum_passthrough(self):
        assert normalize_subject(Subject.QUIMICA) is Subject.QUIMICA

    def test_unknown_subject(self):
        assert try_normalize_subject("Astrología") is None
        assert try_normalize_subject("") is None
        assert try_normalize_subject(None) is None
        with pytest.raises(UnknownSubjectError) as exc_info:
            normalize_subject("Astrología")
        assert exc_info.value.subject == "Astrología"

    def test_unknown_subject_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_subject("Filosofía")

    def test_naturales_block(self):
        assert NATURALES == {Subject.BIOLOGIA, Subject.QUIMICA, Subject.FISICA}


class TestExamIdDetection:
    def test_prefixes(self):
        assert subject_from_exam_id("MA-2024-01") is Subject.MATEMATICAS
        assert subject_from_exam_id("le_simulacro") is Subject.LENGUAJE
        assert subject_from_exam_id("CS1") is Subject.CIENCIAS_SOCIALES
        assert subject_from_exam_id("BI9") is Subject.BIOLOGIA
        assert subject_from_exam_id("QU9") is Subject.QUIMICA
        assert subject_from_exam_id("FI9") is Subject.FISICA
        assert subject_from_exam_id("IN9") is Subject.INGLES

    def test_unknown_prefix(self):
        assert subject_from_exam_id("XX-1") is None
        assert subject_from_exam_id("") is None


class TestTopicCodes:
    def test_known_topic(self):
        assert topic_code(Subject.MATEMATICAS, "Álgebra") == "AL"
        assert topic_code(Subject.MATEMATICAS, "algebra") == "AL"

    def test_fallback_first_two_letters(self):
        assert topic_code(Subject.BIOLOGIA, "célula") == "CÉ"
        assert topic_code(Subject.MATEMATICAS, "Trigonometría") == "TR"


class TestPhases:
    def test_parse(self):
        assert parse_phase("first") is Phase.FIRST
        assert parse_phase("SECOND") is Phase.SECOND
        assert parse_phase("phase3") is Phase.THIRD
        assert parse_phase(Phase.FIRST) is Phase.FIRST

    def test_invalid(self):
        with pytest.raises(InvalidPhaseError):
            parse_phase("fourth")
        with pytest.raises(InvalidPhaseError):
            parse_phase(None)

    def test_order(self):
        assert previous_phase(Phase.FIRST) is None
        assert previous_phase(Phase.THIRD) is Phase.SECOND
        assert next_phase(Phase.FIRST) is Phase.SECOND
        assert next_phase(Phase.THIRD) is None

    def test_folders_canonical_first(self):
        assert canonical_folder(Phase.FIRST) == "fase I"
        assert canonical_folder(Phase.SECOND) == "Fase II"
        assert phase_folders(Phase.SECOND) == ["Fase II", "fase II", "fase 2", "second"]
        assert "Fase III" in phase_folders(Phase.THIRD)


class TestConfigValidation:
    def test_valid_config_builds(self):
        aliases, codes, _, naturales, folders = _build_tables(_config())
        assert aliases["matematicas"] is Subject.MATEMATICAS
        assert len(codes) == len(Subject)
        assert len(naturales) == 3
        assert folders[Phase.FIRST] == ["fase I"]

    def test_alias_collision(self):
        config = _config()
        config["subjects"][0]["aliases"] = ["ciencia"]
        config["subjects"][1]["aliases"] = ["Ciencia"]
        with pytest.raises(SubjectConfigError, match="maps to both"):
            _build_tables(config)

    def test_missing_subject(self):
        config = _config()
        config["subjects"] = config["subjects"][:-1]
        with pytest.raises(SubjectConfigError, match="missing"):
            _build_tables(config)

    def test_unknown_subject_name(self):
        config = _config()
        config["subjects"].append({"name": "Filosofía", "code": "FL"})
        with pytest.raises(SubjectConfigError, match="Unknown subject"):
            _build_tables(config)

    def test_duplicate_code(self):
        config = _config()
        config["subjects"][1]["code"] = config["subjects"][0]["code"]
        with pytest.raises(SubjectConfigError, match="duplicate code"):
            _build_tables(config)

    def test_missing_phase_folders(self):
        config = _config(phase_folders={"first": ["fase I"], "second": ["Fase II"]})
        with pytest.raises(SubjectConfigError, match="third"):
            _build_tables(config)
