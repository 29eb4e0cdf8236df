"""Wires every engine service around one store handle.

Services take their collaborators in the constructor; nothing in the engine is
a process-wide singleton, so tests build an engine per in-memory database.
"""

from dataclasses import dataclass
from typing import Optional

from phase_engine.config import settings
from phase_engine.services.authorization import PhaseAuthorizationStore
from phase_engine.services.directory import SqlStudentDirectory, StudentDirectory
from phase_engine.services.phase_integration import PhaseIntegration
from phase_engine.services.phase_status import PhaseStatusFacade
from phase_engine.services.progress_analysis import ProgressAnalyzer
from phase_engine.services.progress_tracker import PhaseCompletionNotifier, StudentPhaseProgressTracker
from phase_engine.services.question_distributor import QuestionDistributor
from phase_engine.services.ranking import RankingAggregator
from phase_engine.services.result_store import ResultStoreAdapter
from phase_engine.services.weakness_analyzer import WeaknessAnalyzer


@dataclass
class PhaseEngine:
    results: ResultStoreAdapter
    authorizations: PhaseAuthorizationStore
    tracker: StudentPhaseProgressTracker
    weakness: WeaknessAnalyzer
    distributor: QuestionDistributor
    progress: ProgressAnalyzer
    directory: StudentDirectory
    ranking: RankingAggregator
    status: PhaseStatusFacade
    integration: PhaseIntegration


def build_engine(
    db,
    directory: Optional[StudentDirectory] = None,
    notifier: Optional[PhaseCompletionNotifier] = None,
) -> PhaseEngine:
    directory = directory or SqlStudentDirectory(db)
    results = ResultStoreAdapter(db)
    authorizations = PhaseAuthorizationStore(db)
    tracker = StudentPhaseProgressTracker(db, authorizations, results, notifier)
    weakness = WeaknessAnalyzer(db)
    progress = ProgressAnalyzer(db)
    return PhaseEngine(
        results=results,
        authorizations=authorizations,
        tracker=tracker,
        weakness=weakness,
        distributor=QuestionDistributor(weakness, settings.phase2_default_questions),
        progress=progress,
        directory=directory,
        ranking=RankingAggregator(results, directory, settings.ranking_concurrency),
        status=PhaseStatusFacade(tracker, results, directory),
        integration=PhaseIntegration(results, directory, tracker, weakness, progress),
    )
