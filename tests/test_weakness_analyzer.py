"""Tests for the Phase-1 weakness analysis."""

from phase_engine.models.phase import ExamResult
from phase_engine.services.weakness_analyzer import DEFAULT_TOPIC, analyze_exam_result, topic_counts
from phase_engine.subjects import Subject


def _exam(details, **extra):
    data = {
        "questionDetails": [{"topic": t, "isCorrect": ok} for t, ok in details],
        "completed": True,
    }
    data.update(extra)
    return ExamResult.model_validate(data)


MATH_DETAILS = (
    [("Álgebra", True)] * 2 + [("Álgebra", False)] * 2
    + [("Geometría", True)] * 3
    + [("Estadística", False)] * 2
    + [(None, True)]
)


class TestTopicCounts:
    def test_groups_by_topic(self):
        exam = _exam(MATH_DETAILS)
        counts = topic_counts(exam.question_details)
        assert counts["Álgebra"] == (2, 4)
        assert counts["Geometría"] == (3, 3)
        assert counts["Estadística"] == (0, 2)

    def test_missing_topic_goes_to_default(self):
        exam = _exam([(None, True), ("", False), ("  ", True)])
        assert topic_counts(exam.question_details) == {DEFAULT_TOPIC: (2, 3)}


class TestAnalyzeExamResult:
    def test_weakness_below_mean(self):
        analysis = analyze_exam_result("s1", Subject.MATEMATICAS, _exam(MATH_DETAILS))
        by_topic = {tp.topic: tp for tp in analysis.topic_performance}

        assert by_topic["Álgebra"].percentage == 50.0
        assert by_topic["Álgebra"].incorrect == 2
        assert by_topic["Estadística"].is_weakness is True
        assert by_topic["Álgebra"].is_weakness is True
        assert by_topic["Geometría"].is_weakness is False
        assert by_topic[DEFAULT_TOPIC].is_weakness is False

        assert analysis.weaknesses == ["Estadística", "Álgebra"]
        assert analysis.strengths == ["Geometría", DEFAULT_TOPIC]
        assert analysis.primary_weakness == "Estadística"

    def test_topics_sorted_by_name(self):
        analysis = analyze_exam_result("s1", Subject.MATEMATICAS, _exam(MATH_DETAILS))
        names = [tp.topic for tp in analysis.topic_performance]
        assert names == sorted(names)

    def test_topic_codes(self):
        analysis = analyze_exam_result("s1", Subject.MATEMATICAS, _exam(MATH_DETAILS))
        codes = {tp.topic: tp.topic_code for tp in analysis.topic_performance}
        assert codes["Álgebra"] == "AL"
        assert codes["Estadística"] == "ES"
        assert codes[DEFAULT_TOPIC] == "SI"

    def test_overall_score_prefers_stored_score(self):
        exam = _exam(MATH_DETAILS, score={"overallPercentage": 72.5, "percentage": 10})
        assert analyze_exam_result("s1", Subject.MATEMATICAS, exam).overall_score == 72.5

    def test_overall_score_from_details(self):
        assert analyze_exam_result("s1", Subject.MATEMATICAS, _exam(MATH_DETAILS)).overall_score == 60.0

    def test_primary_weakness_tie_broken_by_name(self):
        exam = _exam([("Bravo", False), ("Alfa", False), ("Charlie", True)])
        analysis = analyze_exam_result("s1", Subject.FISICA, exam)
        assert analysis.weaknesses == ["Alfa", "Bravo"]
        assert analysis.primary_weakness == "Alfa"

    def test_equal_topics_have_no_weakness(self):
        exam = _exam([("Alfa", True), ("Bravo", True)])
        analysis = analyze_exam_result("s1", Subject.FISICA, exam)
        assert analysis.weaknesses == []
        assert analysis.strengths == ["Alfa", "Bravo"]
        assert analysis.primary_weakness is None

    def test_empty_details(self):
        exam = ExamResult.model_validate({"score": {"percentage": 40}})
        analysis = analyze_exam_result("s1", Subject.QUIMICA, exam)
        assert analysis.topic_performance == []
        assert analysis.weaknesses == []
        assert analysis.strengths == []
        assert analysis.primary_weakness is None
        assert analysis.overall_score == 40.0


async def test_analysis_is_persisted_and_overwritten(engine):
    first = await engine.weakness.analyze_phase1_results("s1", "matematicas", {
        "questionDetails": [{"topic": "Álgebra", "isCorrect": False}, {"topic": "Geometría", "isCorrect": True}],
    })
    assert first.success
    assert first.data.primary_weakness == "Álgebra"

    stored = await engine.weakness.get_phase1_analysis("s1", Subject.MATEMATICAS)
    assert stored.data.primary_weakness == "Álgebra"
    assert stored.data.subject is Subject.MATEMATICAS

    await engine.weakness.analyze_phase1_results("s1", "Matemáticas", {
        "questionDetails": [{"topic": "Álgebra", "isCorrect": True}, {"topic": "Geometría", "isCorrect": False}],
    })
    stored = await engine.weakness.get_phase1_analysis("s1", "Matemáticas")
    assert stored.data.primary_weakness == "Geometría"


async def test_missing_analysis_is_none(engine):
    result = await engine.weakness.get_phase1_analysis("s1", "Lenguaje")
    assert result.success
    assert result.data is None


async def test_unknown_subject_is_failure(engine):
    result = await engine.weakness.analyze_phase1_results("s1", "Astrología", {"questionDetails": []})
    assert result.success is False
