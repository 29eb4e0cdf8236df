"""Full student journey through the three phases via the exam pipeline."""

import pytest

from phase_engine.db import phase_records as pr
from phase_engine.engine import build_engine
from phase_engine.subjects import ALL_SUBJECTS, Phase, PhaseStatus, Subject


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    async def phase_completed(self, student_id, grade_id, phase):
        self.calls.append((student_id, grade_id, phase))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def pipeline(db, notifier):
    return build_engine(db, notifier=notifier)


def _details(correct_by_topic):
    details = []
    for topic, (correct, wrong) in correct_by_topic.items():
        details += [{"topic": topic, "isCorrect": True}] * correct
        details += [{"topic": topic, "isCorrect": False}] * wrong
    return details


def _exam(correct_by_topic, **extra):
    doc = {"questionDetails": _details(correct_by_topic), "completed": True}
    doc.update(extra)
    return doc


async def _finish_phase(engine, student_id, phase, topics):
    progress = None
    for subject in ALL_SUBJECTS:
        result = await engine.integration.process_exam_results(student_id, subject.value, phase, _exam(topics))
        assert result.success, result.error
        progress = result.data
    return progress


async def test_full_journey(pipeline, add_student, notifier, db):
    await add_student("s1")
    await pipeline.authorizations.authorize_phase("g11", "Once A", "first", "admin1")

    started = await pipeline.integration.record_exam_started("s1", "Matemáticas", "first")
    assert started.data.status is PhaseStatus.IN_PROGRESS

    phase1_topics = {"Álgebra": (1, 3), "Geometría": (3, 1), "Estadística": (2, 2)}
    progress = await _finish_phase(pipeline, "s1", Phase.FIRST, phase1_topics)
    assert progress.status is PhaseStatus.COMPLETED
    assert progress.all_subjects_completed
    assert progress.subjects_in_progress == []
    assert notifier.calls == [("s1", "g11", Phase.FIRST)]

    # Completing phase one prepares the next phase folder
    assert await pipeline.results.ensure_phase_folder("s1", Phase.SECOND) is False

    analysis = (await pipeline.weakness.get_phase1_analysis("s1", "Matemáticas")).data
    assert analysis.primary_weakness == "Álgebra"
    distribution = (await pipeline.distributor.generate_phase2_distribution("s1", "Matemáticas", 20)).data
    assert distribution.primary_weakness == "Álgebra"
    assert distribution.primary_weakness_count + distribution.other_topics_count == 20

    blocked = (await pipeline.tracker.can_student_access_phase("s1", "g11", "second")).data
    assert blocked.can_access is False
    await pipeline.authorizations.authorize_phase("g11", "Once A", "second", "admin1")
    assert (await pipeline.tracker.can_student_access_phase("s1", "g11", "second")).data.can_access

    phase2_topics = {"Álgebra": (3, 1), "Geometría": (4, 0), "Estadística": (2, 2)}
    await _finish_phase(pipeline, "s1", Phase.SECOND, phase2_topics)
    stored = await pr.get_progress_analysis(db, "s1_Matemáticas_progress")
    assert stored is not None

    await pipeline.authorizations.authorize_phase("g11", "Once A", "third", "admin1")
    progress = await _finish_phase(pipeline, "s1", Phase.THIRD, {"Álgebra": (4, 0), "Geometría": (3, 1)})
    assert progress.status is PhaseStatus.COMPLETED
    assert [c[2] for c in notifier.calls] == [Phase.FIRST, Phase.SECOND, Phase.THIRD]

    history = (await pipeline.progress.get_student_history("s1", "Matemáticas")).data
    assert [h.phase for h in history] == [Phase.FIRST, Phase.SECOND, Phase.THIRD]
    assert [h.score for h in history] == [50.0, 75.0, 87.5]
    assert history[2].icfes_score == 438
    assert history[0].icfes_score is None

    indicators = (await pipeline.progress.calculate_progress_indicators("s1", "Matemáticas")).data
    assert indicators.trend == "improving"
    assert indicators.standardized_score == 438

    status = await pipeline.status.fetch_phase_status_for_student("s1")
    assert status.is_phase3_complete is True


async def test_phase2_without_phase1_still_completes(pipeline, add_student):
    await add_student("s1")
    result = await pipeline.integration.process_exam_results(
        "s1", "Inglés", "second", _exam({"Vocabulario": (2, 2)}),
    )
    assert result.success
    assert result.data.subjects_completed == ["Inglés"]


async def test_student_without_grade_fails(pipeline, add_student):
    await add_student("s1", grade_id=None)
    result = await pipeline.integration.process_exam_results("s1", "Inglés", "first", _exam({"A": (1, 0)}))
    assert not result.success
    assert "No grade" in result.error


async def test_invalid_input_fails(pipeline, add_student):
    await add_student("s1")
    bad_phase = await pipeline.integration.process_exam_results("s1", "Inglés", "fourth", _exam({"A": (1, 0)}))
    bad_subject = await pipeline.integration.process_exam_results("s1", "Arte", "first", _exam({"A": (1, 0)}))
    assert not bad_phase.success
    assert not bad_subject.success


async def test_exam_stored_under_canonical_subject(pipeline, add_student):
    await add_student("s1")
    await pipeline.integration.process_exam_results("s1", "physics", "first", _exam({"Ondas": (1, 1)}))
    stored = await pipeline.results.find_phase_result("s1", Phase.FIRST, Subject.FISICA)
    assert stored is not None
    assert stored.subject == "Física"
    assert stored.phase == "first"


async def test_first_phase_scenario_opens_second_phase(pipeline, add_student):
    await add_student("s1")
    percentages = [90, 80, 70, 60, 50, 40, 30]
    progress = None
    for subject, pct in zip(ALL_SUBJECTS, percentages):
        exam = {"completed": True, "score": {"overallPercentage": pct}}
        result = await pipeline.integration.process_exam_results("s1", subject.value, "first", exam)
        assert result.success, result.error
        progress = result.data
    assert progress.all_subjects_completed is True

    assert (await pipeline.tracker.effective_phase_status("s1", "g11", "second")).data is PhaseStatus.LOCKED
    await pipeline.authorizations.authorize_phase("g11", "Once A", "second", "admin1")
    assert (await pipeline.tracker.effective_phase_status("s1", "g11", "second")).data is PhaseStatus.AVAILABLE
    access = (await pipeline.tracker.can_student_access_phase("s1", "g11", "second")).data
    assert access.can_access is True

    best = await pipeline.results.get_completed_results("s1", "first")
    assert sorted(r.percentage() for r in best) == sorted(percentages)


async def test_incomplete_attempt_leaves_subject_in_progress(pipeline, add_student):
    await add_student("s1")
    exam = _exam({"Álgebra": (2, 2)}, completed=False)
    result = await pipeline.integration.process_exam_results("s1", "Matemáticas", "first", exam)
    assert result.success
    assert result.data.subjects_completed == []
    assert result.data.subjects_in_progress == [Subject.MATEMATICAS]
    assert await pipeline.results.get_completed_results("s1", "first") == []
    assert (await pipeline.weakness.get_phase1_analysis("s1", "Matemáticas")).data is None

    flagged = _exam({"Álgebra": (2, 2)}, isCompleted=False)
    result = await pipeline.integration.process_exam_results("s1", "Lenguaje", "first", flagged)
    assert result.data.subjects_completed == []


async def test_incomplete_attempt_keeps_earlier_completion(pipeline, add_student):
    await add_student("s1")
    await pipeline.integration.process_exam_results("s1", "Inglés", "first", _exam({"Vocabulario": (3, 1)}))
    result = await pipeline.integration.process_exam_results(
        "s1", "Inglés", "first", _exam({"Vocabulario": (0, 4)}, completed=False),
    )
    assert result.data.subjects_completed == [Subject.INGLES]
    stored = await pipeline.results.find_phase_result("s1", Phase.FIRST, Subject.INGLES)
    assert stored.percentage() == 75.0
