"""
Test result data structures
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class CaseStatus(Enum):
    """Case outcome"""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class CaseResult:
    """Result of a single conformance case"""
    case_id: str
    description: str
    requirement: str
    status: CaseStatus = CaseStatus.SKIPPED
    diagnostic: Optional[str] = None
    matched_frame: Optional[str] = None
    duration: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    traceback: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASSED

    @property
    def failed(self) -> bool:
        return self.status == CaseStatus.FAILED

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'case_id': self.case_id,
            'description': self.description,
            'requirement': self.requirement,
            'status': self.status.value,
            'diagnostic': self.diagnostic,
            'matched_frame': self.matched_frame,
            'duration': round(self.duration, 3),
            'timestamp': self.timestamp.isoformat(),
            'traceback': self.traceback
        }

    def __repr__(self):
        return f"CaseResult({self.case_id}: {self.status.value})"


@dataclass
class SectionResult:
    """
    Results for one section of the run

    Counts are always the sum over direct children: the section's own case
    results plus its child sections.
    """
    section_id: str
    title: str
    depth: int = 0
    results: List[CaseResult] = field(default_factory=list)
    children: List['SectionResult'] = field(default_factory=list)

    def _count(self, status: CaseStatus) -> int:
        own = sum(1 for r in self.results if r.status == status)
        return own + sum(child._count(status) for child in self.children)

    @property
    def passed(self) -> int:
        return self._count(CaseStatus.PASSED)

    @property
    def failed(self) -> int:
        return self._count(CaseStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(CaseStatus.SKIPPED)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    def iter_results(self):
        """Yield every case result in this subtree, in run order"""
        yield from self.results
        for child in self.children:
            yield from child.iter_results()

    def to_dict(self) -> Dict:
        return {
            'section_id': self.section_id,
            'title': self.title,
            'summary': {
                'total': self.total,
                'passed': self.passed,
                'failed': self.failed,
                'skipped': self.skipped
            },
            'results': [r.to_dict() for r in self.results],
            'sections': [c.to_dict() for c in self.children]
        }

    def __repr__(self):
        return f"SectionResult({self.section_id}: {self.passed}/{self.total} passed)"


@dataclass
class Report:
    """Whole-run report rooted at an unnamed section"""
    target: str
    root: SectionResult = field(default_factory=lambda: SectionResult('', 'All sections', depth=-1))
    timestamp: datetime = field(default_factory=datetime.now)
    total_duration: float = 0.0

    def is_success(self) -> bool:
        """Check that no executed case failed"""
        return self.root.failed == 0

    def failures(self) -> List[CaseResult]:
        return [r for r in self.root.iter_results() if r.failed]

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return {
            'target': self.target,
            'timestamp': self.timestamp.isoformat(),
            'total_duration': round(self.total_duration, 3),
            'summary': {
                'total': self.root.total,
                'passed': self.root.passed,
                'failed': self.root.failed,
                'skipped': self.root.skipped
            },
            'sections': [c.to_dict() for c in self.root.children]
        }

    def __repr__(self):
        return f"Report({self.target}: {self.root.passed}/{self.root.total} passed)"
