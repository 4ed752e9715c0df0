"""
Case execution engine with a bounded classification loop
"""

import time
import traceback
from typing import Callable, Optional, Sequence

from .classifier import CLOSED_BEFORE_MATCH, NO_MATCH_BEFORE_DEADLINE, OutcomeClassifier, Verdict
from .config import RunConfig
from .errors import (CodecError, ConnectSetupError, ConnectionClosedError, ReadTimeoutError,
                     WriteError)
from .expectations import Expectation
from .registry import ConformanceCase, Section, is_on_path, is_selected
from .reports import Reporter
from .results import CaseResult, Report
from .session import Session

SessionFactory = Callable[[RunConfig, bool], Session]


class CaseRunner:
    """Run one case at a time: open a session, provoke the SUT, classify the answer"""

    def __init__(self, run_config: RunConfig, session_factory: Optional[SessionFactory] = None,
                 clock: Callable[[], float] = time.monotonic, verbose: bool = False):
        """
        Initialize case runner

        Args:
            run_config: Resolved run configuration (timeout is the per-case budget)
            session_factory: Callable (run_config, settings_exchange) -> open Session
            clock: Monotonic clock; injectable so tests control the budget
            verbose: Print trace output during execution
        """
        self.run_config = run_config
        self.session_factory = session_factory or self._open_session
        self.clock = clock
        self.verbose = verbose

    def _open_session(self, run_config: RunConfig, settings_exchange: bool) -> Session:
        return Session.open(run_config, settings_exchange=settings_exchange,
                            clock=self.clock, verbose=self.verbose)

    def run_case(self, case: ConformanceCase) -> CaseResult:
        """
        Run a single case; every error is turned into a FAILED result

        Args:
            case: ConformanceCase to run

        Returns:
            CaseResult
        """
        result = CaseResult(
            case_id=case.case_id,
            description=case.description,
            requirement=case.requirement
        )
        if self.verbose:
            print(f"  Running {case.case_id}: {case.description[:60]}...")

        start_time = self.clock()
        try:
            with self.session_factory(self.run_config, case.settings_exchange) as session:
                case.build(session)
                verdict = self.classify(session, case.expectations)

        except ConnectSetupError as e:
            verdict = Verdict.fail(f"connection setup failed: {e}")
        except WriteError as e:
            verdict = Verdict.fail(f"could not send request: {e}")
        except CodecError as e:
            verdict = Verdict.fail(f"could not encode request: {e}")
        except ReadTimeoutError:
            verdict = Verdict.fail(NO_MATCH_BEFORE_DEADLINE)
        except ConnectionClosedError:
            verdict = Verdict.fail(CLOSED_BEFORE_MATCH)
        except Exception as e:
            verdict = Verdict.fail(f"harness error: {type(e).__name__}: {e}")
            result.traceback = traceback.format_exc()

        result.duration = self.clock() - start_time
        result.status = verdict.status
        result.diagnostic = verdict.diagnostic
        if verdict.frame is not None:
            result.matched_frame = str(verdict.frame)

        if self.verbose:
            print(f"    [Runner] {verdict.status.value} in {result.duration:.2f}s")
        return result

    def classify(self, session: Session, expectations: Sequence[Expectation]) -> Verdict:
        """
        Read frames until one decides the case or the budget runs out

        The budget is fixed once, before the first read; every receive gets
        only what is left of it, so a SUT trickling harmless frames cannot
        keep the case alive. A transport error ends the loop at once.

        Args:
            session: Session on which the request has been sent
            expectations: Acceptable answers in priority order

        Returns:
            Terminal Verdict
        """
        classifier = OutcomeClassifier(expectations)
        deadline = self.clock() + self.run_config.timeout

        while not classifier.done:
            remaining = deadline - self.clock()
            if remaining <= 0:
                classifier.exhaust(NO_MATCH_BEFORE_DEADLINE)
                break
            try:
                frame = session.receive(remaining)
            except ReadTimeoutError:
                classifier.exhaust(NO_MATCH_BEFORE_DEADLINE)
            except ConnectionClosedError:
                classifier.exhaust(CLOSED_BEFORE_MATCH)
            else:
                if self.verbose:
                    print(f"    [Runner] <- {frame}")
                classifier.feed(frame)

        return classifier.verdict


class ConformanceRunner:
    """Walk the section tree and run every selected case in order"""

    def __init__(self, run_config: RunConfig, reporter: Reporter,
                 case_runner: Optional[CaseRunner] = None, verbose: bool = False):
        self.run_config = run_config
        self.reporter = reporter
        self.case_runner = case_runner or CaseRunner(run_config, verbose=verbose)
        self.filters = run_config.filters

    def run(self, root: Section) -> Report:
        """
        Run all selected cases below root

        Args:
            root: Root of the section tree (usually registry.root)

        Returns:
            The reporter's Report, complete
        """
        start_time = time.time()
        self._run_children(root)
        self.reporter.report.total_duration = time.time() - start_time
        return self.reporter.report

    def _run_children(self, section: Section):
        for child in section.children:
            if isinstance(child, Section):
                quiet = not is_on_path(child.section_id, self.filters)
                with self.reporter.section(child, quiet=quiet):
                    self._run_children(child)
            elif is_selected(child.case_id, self.filters):
                result = self.case_runner.run_case(child)
                self.reporter.record(result, child.depth)
            else:
                self.reporter.skip(child)
