"""Tests for result lookup strategies and document normalization."""

import pytest

from phase_engine.db import phase_records as pr
from phase_engine.services.result_store import (
    LegacyFlatStrategy,
    PhaseFolderStrategy,
    default_strategies,
    normalize_exam_document,
)
from phase_engine.subjects import Phase, Subject


class BrokenStrategy:
    name = "broken"

    async def fetch(self, db, student_id):
        raise OSError("store unreachable")


class TestNormalizeExamDocument:
    def test_snake_and_camel_case(self):
        camel = normalize_exam_document("e1", {"subject": "fisica", "score": {"overallPercentage": 70}})
        snake = normalize_exam_document("e2", {"subject": "fisica", "score": {"overall_percentage": 70}})
        assert camel.subject == snake.subject == Subject.FISICA.value
        assert camel.percentage() == snake.percentage() == 70

    def test_incomplete_attempts_are_skipped(self):
        assert normalize_exam_document("e1", {"subject": "Física", "completed": False}) is None
        assert normalize_exam_document("e1", {"subject": "Física", "isCompleted": False}) is None
        assert normalize_exam_document("e1", {"subject": "Física"}) is not None

    def test_subject_from_title_or_exam_id(self):
        assert normalize_exam_document("x", {"examTitle": "Biology"}).subject == "Biologia"
        assert normalize_exam_document("QU-2024", {}).subject == "Quimica"

    def test_unknown_subject_is_skipped(self):
        assert normalize_exam_document("XX-1", {"subject": "Astrología"}) is None

    def test_placeholder_is_skipped(self):
        assert normalize_exam_document("_placeholder", {"placeholder": True}) is None

    def test_exam_id_filled_in(self):
        assert normalize_exam_document("MA-7", {}).exam_id == "MA-7"

    @pytest.mark.parametrize("score,expected", [
        ({"overallPercentage": 81, "percentage": 10}, 81),
        ({"percentage": 64}, 64),
        ({"correctAnswers": 3, "totalQuestions": 4}, 75),
        ({"correctAnswers": 3, "totalQuestions": 0}, 0),
        (55, 55),
    ])
    def test_percentage_fallbacks(self, score, expected):
        assert normalize_exam_document("MA-1", {"score": score}).percentage() == expected

    def test_percentage_from_details(self):
        doc = {"questionDetails": [{"isCorrect": True}, {"isCorrect": False}]}
        assert normalize_exam_document("MA-1", doc).percentage() == 50


async def test_save_writes_canonical_folder(engine, db, make_exam):
    await engine.results.save_exam_result("s1", "second", "MA-1", make_exam("Matemáticas", 70))
    rows = await pr.list_exam_results(db, "s1", "Fase II")
    assert [r["exam_id"] for r in rows] == ["MA-1"]
    assert rows[0]["data"]["phase"] == "second"


async def test_canonical_folder_wins(engine, db, make_exam):
    await pr.upsert_exam_result(db, "s1", "Fase II", "MA-1", make_exam("Matemáticas", 90))
    await pr.upsert_exam_result(db, "s1", "fase II", "LE-1", make_exam("Lenguaje", 40))
    results = await engine.results.get_completed_results("s1", Phase.SECOND)
    assert [r.exam_id for r in results] == ["MA-1"]


async def test_legacy_folder_spelling(engine, db, make_exam):
    await pr.upsert_exam_result(db, "s1", "fase 2", "LE-1", make_exam("lenguaje", 40))
    results = await engine.results.get_completed_results("s1", "second")
    assert [(r.exam_id, r.subject) for r in results] == [("LE-1", "Lenguaje")]


async def test_list_phase_folder_reads_one_folder(engine, db, make_exam):
    await pr.upsert_exam_result(db, "s1", "fase 2", "LE-1", make_exam("lenguaje", 40))
    await pr.upsert_exam_result(db, "s1", "fase 2", "MA-1", make_exam("Matemáticas", 60, completed=False))
    await engine.results.ensure_phase_folder("s1", "second")

    legacy = await engine.results.list_phase_folder("s1", "fase 2")
    assert [(r.exam_id, r.subject) for r in legacy] == [("LE-1", "Lenguaje")]
    assert await engine.results.list_phase_folder("s1", "Fase II") == []


async def test_legacy_flat_document(engine, db, make_exam):
    await pr.upsert_legacy_results(db, "s1", {
        "MA-1": make_exam("matematicas", 60, phase="first"),
        "FI-1": make_exam("physics", 50, phase="second"),
        "BI-1": make_exam("Biologia", 70, phase="first", completed=False),
        "junk": "not an exam",
    })
    first = await engine.results.get_completed_results("s1", "first")
    second = await engine.results.get_completed_results("s1", "second")
    assert [r.subject for r in first] == ["Matemáticas"]
    assert [r.subject for r in second] == ["Física"]


async def test_folder_beats_flat_document(engine, db, make_exam):
    await pr.upsert_legacy_results(db, "s1", {"MA-1": make_exam("Matemáticas", 10, phase="first")})
    await engine.results.save_exam_result("s1", "first", "MA-2", make_exam("Matemáticas", 90))
    results = await engine.results.get_completed_results("s1", "first")
    assert [r.exam_id for r in results] == ["MA-2"]


async def test_only_placeholder_falls_through(engine, db, make_exam):
    await engine.results.ensure_phase_folder("s1", "second")
    await pr.upsert_exam_result(db, "s1", "second", "IN-1", make_exam("English", 88))
    results = await engine.results.get_completed_results("s1", "second")
    assert [r.subject for r in results] == ["Inglés"]


async def test_ensure_phase_folder_is_idempotent(engine, db):
    assert await engine.results.ensure_phase_folder("s1", "third") is True
    assert await engine.results.ensure_phase_folder("s1", "third") is False
    rows = await pr.list_exam_results(db, "s1", "fase III", include_placeholders=True)
    assert len(rows) == 1


async def test_failing_strategy_is_skipped(engine, db, make_exam):
    await pr.upsert_exam_result(db, "s1", "fase I", "MA-1", make_exam("Matemáticas", 90))
    results = await engine.results.resolve_phase_results("s1", [BrokenStrategy(), PhaseFolderStrategy("fase I")])
    assert len(results) == 1


async def test_all_strategies_failing_raises(engine):
    with pytest.raises(OSError):
        await engine.results.resolve_phase_results("s1", [BrokenStrategy(), BrokenStrategy()])


async def test_no_results_is_empty(engine):
    assert await engine.results.resolve_phase_results("s1", default_strategies(Phase.THIRD)) == []


async def test_find_phase_result_takes_best(engine, make_exam):
    await engine.results.save_exam_result("s1", "first", "MA-1", make_exam("Matemáticas", 55))
    await engine.results.save_exam_result("s1", "first", "MA-2", make_exam("matematicas", 85))
    await engine.results.save_exam_result("s1", "first", "LE-1", make_exam("Lenguaje", 99))
    best = await engine.results.find_phase_result("s1", "first", Subject.MATEMATICAS)
    assert best.exam_id == "MA-2"
    assert await engine.results.find_phase_result("s1", "first", Subject.FISICA) is None


async def test_default_strategy_order():
    names = [s.name for s in default_strategies(Phase.FIRST)]
    assert names == ["folder:fase I", "folder:Fase I", "folder:fase 1", "folder:first", "legacy-flat"]
    assert isinstance(default_strategies(Phase.FIRST)[-1], LegacyFlatStrategy)
