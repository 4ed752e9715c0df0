"""
Console reporting and report generation for the HTTP/2 conformance harness
"""

import json
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, TextIO

from colorama import Fore, Style
from jinja2 import Template

from .registry import ConformanceCase, Section
from .results import CaseResult, CaseStatus, Report, SectionResult

INDENT = "  "

STATUS_SYMBOLS = {
    CaseStatus.PASSED: "✓",
    CaseStatus.FAILED: "✗",
    CaseStatus.SKIPPED: "○",
}

STATUS_COLORS = {
    CaseStatus.PASSED: Fore.GREEN,
    CaseStatus.FAILED: Fore.RED,
    CaseStatus.SKIPPED: Fore.YELLOW,
}


class Reporter:
    """
    Collect case results into a section tree and print them as they arrive

    The runner is the only writer. Each section entered adds a SectionResult
    under the current one, so a section's counts are always the sum of its
    direct children.
    """

    def __init__(self, target: str = '', stream: Optional[TextIO] = None,
                 color: Optional[bool] = None):
        """
        Args:
            target: Name of the SUT, used in the summary
            stream: Output stream (default: stdout)
            color: Use ANSI colors; None colors only when stream is a terminal
        """
        self.stream = stream or sys.stdout
        if color is None:
            color = hasattr(self.stream, 'isatty') and self.stream.isatty()
        self.color = color
        self.report = Report(target)
        self._stack = [self.report.root]

    @property
    def current(self) -> SectionResult:
        return self._stack[-1]

    def _print(self, line: str = ""):
        print(line, file=self.stream)

    def _paint(self, text: str, color: str) -> str:
        if not self.color:
            return text
        return f"{color}{text}{Style.RESET_ALL}"

    def enter_section(self, section: Section, quiet: bool = False) -> SectionResult:
        """
        Open a section node under the current one

        Args:
            section: Section being entered
            quiet: Track the section without printing its header (filtered out)
        """
        node = SectionResult(section.section_id, section.title, depth=section.depth)
        self.current.children.append(node)
        self._stack.append(node)
        if not quiet:
            self._print(f"{INDENT * section.depth}{section.heading}")
        return node

    def leave_section(self):
        if len(self._stack) == 1:
            raise RuntimeError("leave_section() without a matching enter_section()")
        node = self._stack.pop()
        if node.depth == 0 and node.total != node.skipped:
            self._print()

    @contextmanager
    def section(self, section: Section, quiet: bool = False):
        node = self.enter_section(section, quiet=quiet)
        try:
            yield node
        finally:
            self.leave_section()

    def record(self, result: CaseResult, depth: int = 0):
        """
        File a case result under the current section and print its line

        Failures also print the requirement they violate and the diagnostic.
        """
        self.current.results.append(result)

        indent = INDENT * (depth + 1)
        symbol = self._paint(STATUS_SYMBOLS[result.status], STATUS_COLORS[result.status])
        self._print(f"{indent}{symbol} {result.description}")
        if result.failed:
            self._print(self._paint(f"{indent}  - {result.requirement}", Fore.RED))
            if result.diagnostic:
                self._print(f"{indent}    {result.diagnostic}")

    def skip(self, case: ConformanceCase):
        """Count a case that was filtered out; nothing is printed"""
        self.current.results.append(CaseResult(
            case_id=case.case_id,
            description=case.description,
            requirement=case.requirement,
            status=CaseStatus.SKIPPED
        ))

    def print_summary(self):
        root = self.report.root
        failures = self.report.failures()
        if failures:
            self._print("Failures:")
            for result in failures:
                self._print(f"{INDENT}✗ {result.case_id} {result.description}")
                self._print(f"{INDENT * 2}- {result.requirement}")
            self._print()

        line = (f"{root.total} tests, {root.passed} passed, "
                f"{root.failed} failed, {root.skipped} skipped")
        self._print(self._paint(line, Fore.RED if root.failed else Fore.GREEN))

    def exit_status(self) -> int:
        """0 when no executed case failed, 1 otherwise"""
        return 0 if self.report.is_success() else 1


class ReportGenerator:
    """Generate test reports in file formats"""

    def __init__(self, template_path: str = 'templates/report_template.html'):
        """
        Initialize report generator

        Args:
            template_path: Path to HTML template file
        """
        self.template_path = Path(template_path)

    def generate_html(self, report: Report, output_path: str):
        """
        Generate HTML report

        Args:
            report: Report of a finished run
            output_path: Path to output HTML file
        """
        if not self.template_path.exists():
            print(f"Warning: Template not found at {self.template_path}, skipping HTML report")
            return

        with open(self.template_path, encoding='utf-8') as f:
            template = Template(f.read())

        html = template.render(
            target=report.target,
            timestamp=report.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            total_duration=report.total_duration,
            summary=report.to_dict()['summary'],
            sections=report.root.children,
            symbols={status.value: symbol for status, symbol in STATUS_SYMBOLS.items()}
        )

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(html)

        print(f"HTML report generated: {output_path}")

    def generate_json(self, report: Report, output_path: str):
        """
        Generate JSON report

        Args:
            report: Report of a finished run
            output_path: Path to output JSON file
        """
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(report.to_dict(), f, indent=2)

        print(f"JSON report generated: {output_path}")
