from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, computed_field, field_validator
from pydantic.alias_generators import to_camel

from phase_engine.subjects import Phase, PhaseStatus, Subject, TOTAL_SUBJECTS


class _StoredDocument(BaseModel):
    """Accepts both the camelCase keys of historical documents and snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Raw exam results ──────────────────────────────────────────────────

class QuestionDetail(_StoredDocument):
    question_id: Optional[str] = None
    topic: Optional[str] = None
    is_correct: bool = False
    answered: bool = True


class ExamScore(_StoredDocument):
    correct_answers: Optional[int] = None
    total_answered: Optional[int] = None
    total_questions: Optional[int] = None
    percentage: Optional[float] = None
    overall_percentage: Optional[float] = None


class ExamResult(_StoredDocument):
    exam_id: Optional[str] = None
    subject: Optional[str] = None
    exam_title: Optional[str] = None
    phase: Optional[str] = None
    score: Optional[ExamScore] = None
    question_details: List[QuestionDetail] = []
    completed: Optional[bool] = None
    is_completed: Optional[bool] = None
    timestamp: Optional[Any] = None

    @field_validator("score", mode="before")
    @classmethod
    def _bare_number_score(cls, value):
        # Some legacy documents store the percentage directly as the score
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"overall_percentage": float(value)}
        return value

    @property
    def is_complete(self) -> bool:
        """Only an explicit False on either flag marks an attempt incomplete."""
        return self.completed is not False and self.is_completed is not False

    def percentage(self) -> float:
        """Best available percentage, trying the richest score field first."""
        score = self.score
        if score is not None:
            if score.overall_percentage is not None:
                return float(score.overall_percentage)
            if score.percentage is not None:
                return float(score.percentage)
            if score.correct_answers is not None and score.total_questions is not None:
                total = score.total_questions
                return score.correct_answers / total * 100 if total > 0 else 0.0
        if self.question_details:
            correct = sum(1 for q in self.question_details if q.is_correct)
            return correct / len(self.question_details) * 100
        return 0.0


# ── Authorization and progress ────────────────────────────────────────

class PhaseAuthorization(BaseModel):
    id: str
    grade_id: str
    grade_name: Optional[str] = None
    phase: Phase
    subject: Optional[Subject] = None
    authorized: bool = False
    authorized_by: Optional[str] = None
    authorized_at: Optional[str] = None
    institution_id: Optional[str] = None
    campus_id: Optional[str] = None
    created_at: str
    updated_at: str


class StudentPhaseProgress(BaseModel):
    student_id: str
    grade_id: str
    phase: Phase
    status: PhaseStatus
    subjects_completed: List[Subject] = []
    subjects_in_progress: List[Subject] = []
    overall_score: Optional[float] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @computed_field
    @property
    def all_subjects_completed(self) -> bool:
        return len(set(self.subjects_completed)) >= TOTAL_SUBJECTS


class AccessDecision(BaseModel):
    can_access: bool
    reason: Optional[str] = None


class GradePhaseCompletion(BaseModel):
    grade_id: str
    phase: Phase
    total_students: int
    completed_students: int
    in_progress_students: int
    pending_students: int
    completion_percentage: float
    all_completed: bool
    last_updated: str


# ── Weakness analysis and Phase-2 distribution ────────────────────────

class TopicPerformance(BaseModel):
    topic: str
    topic_code: str
    correct: int = 0
    incorrect: int = 0
    total: int = 0
    percentage: float = 0.0
    is_weakness: bool = False


class Phase1Analysis(BaseModel):
    student_id: str
    subject: Subject
    overall_score: float = 0.0
    topic_performance: List[TopicPerformance] = []
    strengths: List[str] = []
    weaknesses: List[str] = []
    primary_weakness: Optional[str] = None
    analyzed_at: Optional[str] = None


class TopicCount(BaseModel):
    topic: str
    count: int


class QuestionDistribution(BaseModel):
    subject: Subject
    total_questions: int
    primary_weakness: Optional[str] = None
    other_topics: List[str] = []
    primary_weakness_count: int = 0
    other_topics_count: int = 0
    weakness_distribution: List[TopicCount] = []
    strength_distribution: List[TopicCount] = []


# ── Ranking ───────────────────────────────────────────────────────────

class StudentRecord(BaseModel):
    id: str
    name: Optional[str] = None
    grade_id: Optional[str] = None
    institution_id: Optional[str] = None
    campus_id: Optional[str] = None
    is_active: bool = True


class RankingResult(BaseModel):
    student_id: str
    rank: Optional[int] = None
    total_in_phase: int = 0
    total_in_grade: int = 0


# ── Phase status façade ───────────────────────────────────────────────

class PhaseState(BaseModel):
    phase: Phase
    status: PhaseStatus = PhaseStatus.LOCKED
    can_access: bool = False
    is_completed: bool = False
    is_in_progress: bool = False
    is_exam_completed: bool = False
    all_subjects_completed: bool = False
    reason: Optional[str] = None


class PhaseStatusData(BaseModel):
    phase_states_by_subject: Dict[str, Dict[str, PhaseState]] = {}
    is_phase3_complete: bool = False


# ── Progress analysis, Phase-3 results and history ────────────────────

class TopicImprovement(BaseModel):
    topic: str
    phase1_percentage: float
    phase2_percentage: float
    improvement: float


class ProgressAnalysis(BaseModel):
    student_id: str
    subject: Subject
    phase1_score: float
    phase2_score: float
    improvement: float
    has_improved: bool
    weakness_improvement: List[TopicImprovement] = []
    insights: List[str] = []
    analyzed_at: Optional[str] = None


class TopicScore(BaseModel):
    topic: str
    score: int
    percentage: float


class Phase3Result(BaseModel):
    student_id: str
    subject: Subject
    icfes_score: int
    percentage: float
    topic_scores: List[TopicScore] = []
    overall_diagnosis: str = ""
    recommendations: List[str] = []
    completed_at: Optional[str] = None


class SubjectIcfesScore(BaseModel):
    subject: Subject
    score: int
    percentage: float
    max_possible: int


class FinalIcfesScore(BaseModel):
    total_score: int
    subject_scores: List[SubjectIcfesScore] = []
    natural_sciences_score: Optional[int] = None


class TopicPercentage(BaseModel):
    topic: str
    percentage: float


class PerformanceHistory(BaseModel):
    student_id: str
    subject: Subject
    phase: Phase
    score: float
    icfes_score: Optional[int] = None
    completed_at: Optional[str] = None
    topic_performance: List[TopicPercentage] = []


class PhaseComparison(BaseModel):
    phase: Phase
    score: float
    improvement: Optional[float] = None


class ProgressIndicators(BaseModel):
    student_id: str
    subject: Subject
    standardized_score: int = 0
    improvement_index: float = 0.0
    variability: float = 0.0
    trend: str = "stable"
    phase_comparisons: List[PhaseComparison] = []
