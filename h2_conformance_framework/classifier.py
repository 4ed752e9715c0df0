"""
Outcome classifier: turns a stream of inbound frames into one verdict
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from .expectations import Expectation
from .frames import InboundFrame
from .results import CaseStatus

NO_MATCH_BEFORE_DEADLINE = "no matching frame observed before deadline"
CLOSED_BEFORE_MATCH = "connection closed before match"


class ClassifierState(Enum):
    WAITING = "waiting"
    MATCHED = "matched"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class Verdict:
    """Terminal decision for one case"""
    status: CaseStatus
    diagnostic: Optional[str] = None
    expectation: Optional[Expectation] = None
    frame: Optional[InboundFrame] = None

    @classmethod
    def fail(cls, diagnostic: str, expectation: Expectation = None,
             frame: InboundFrame = None) -> 'Verdict':
        return cls(CaseStatus.FAILED, diagnostic, expectation, frame)

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASSED


class OutcomeClassifier:
    """
    Match inbound frames against an ordered list of expectations

    WAITING is the initial state; MATCHED and EXHAUSTED are terminal and
    nothing moves the classifier out of them. Expectations are checked in
    registration order and the first frame that satisfies one decides the
    case. A case made only of negative expectations passes when it is
    exhausted without seeing a forbidden frame.
    """

    def __init__(self, expectations: Sequence[Expectation]):
        if not expectations:
            raise ValueError("A case needs at least one expectation")
        self.expectations: List[Expectation] = list(expectations)
        self.state = ClassifierState.WAITING
        self.verdict: Optional[Verdict] = None
        self.frames_seen = 0

    @property
    def done(self) -> bool:
        return self.state is not ClassifierState.WAITING

    def feed(self, frame: InboundFrame) -> Optional[Verdict]:
        """
        Consider one inbound frame

        Returns:
            The verdict once terminal, None while still waiting
        """
        if self.done:
            return self.verdict
        self.frames_seen += 1

        for expectation in self.expectations:
            if not expectation.matches(frame):
                continue
            if expectation.negative:
                self.state = ClassifierState.EXHAUSTED
                self.verdict = Verdict.fail(f"forbidden frame received: {frame}",
                                            expectation, frame)
            else:
                self.state = ClassifierState.MATCHED
                self.verdict = Verdict(CaseStatus.PASSED, None, expectation, frame)
            return self.verdict

        return None

    def exhaust(self, reason: str) -> Verdict:
        """Stop waiting: the deadline passed or the connection went away"""
        if self.done:
            return self.verdict
        self.state = ClassifierState.EXHAUSTED
        if all(e.negative for e in self.expectations):
            # Nothing was required, and nothing forbidden showed up
            self.verdict = Verdict(CaseStatus.PASSED, reason)
            return self.verdict
        if self.frames_seen:
            reason = f"{reason} ({self.frames_seen} unrelated frame(s) ignored)"
        self.verdict = Verdict.fail(reason)
        return self.verdict
