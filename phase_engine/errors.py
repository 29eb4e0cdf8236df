"""Exception types raised by the phase engine.

Contract methods on the services never let these escape to callers; they are
converted into failure results. They are raised directly only for programming
and configuration mistakes (a bad alias table, an unknown phase literal).
"""


class PhaseEngineError(Exception):
    """Base class for all engine errors."""


class SubjectConfigError(PhaseEngineError):
    """The subject alias table is inconsistent."""


class UnknownSubjectError(PhaseEngineError, ValueError):
    def __init__(self, subject: str):
        super().__init__(f"Unrecognized subject: {subject!r}")
        self.subject = subject


class InvalidPhaseError(PhaseEngineError, ValueError):
    def __init__(self, phase: str):
        super().__init__(f"Invalid phase: {phase!r} (expected first, second or third)")
        self.phase = phase
