"""
Section tree and case registry for the HTTP/2 conformance harness
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from .expectations import Expectation


@dataclass
class ConformanceCase:
    """
    One conformance check: how to provoke the SUT and what it must answer

    The build function receives an open Session and writes the offending
    frames; the runner takes care of connecting, reading and closing.
    """
    case_id: str
    description: str
    requirement: str
    build: Callable
    expectations: Tuple[Expectation, ...]
    settings_exchange: bool = True
    depth: int = 0

    def __repr__(self):
        return f"ConformanceCase({self.case_id})"


def id_within(node_id: str, prefix: str) -> bool:
    """True if node_id equals prefix or lies below it at a component boundary"""
    if not prefix:
        return True
    return (node_id == prefix
            or node_id.startswith(prefix + '.')
            or node_id.startswith(prefix + '/'))


def is_selected(node_id: str, filters: Sequence[str]) -> bool:
    """A node runs when it lies within one of the filter prefixes"""
    return not filters or any(id_within(node_id, f) for f in filters)


def is_on_path(node_id: str, filters: Sequence[str]) -> bool:
    """A section is entered when it is selected or is an ancestor of a selected node"""
    return not filters or any(id_within(node_id, f) or id_within(f, node_id) for f in filters)


class Section:
    """A titled group of cases and sub-sections, e.g. '8.1.2.1 Pseudo-Header Fields'"""

    def __init__(self, section_id: str, title: str, parent: Optional['Section'] = None):
        self.section_id = section_id
        self.title = title
        self.parent = parent
        self.children: List[Union['Section', ConformanceCase]] = []

    @property
    def depth(self) -> int:
        """Nesting level; top-level sections are 0, the root is -1"""
        if self.parent is None:
            return -1
        return self.parent.depth + 1

    @property
    def heading(self) -> str:
        return f"{self.section_id}. {self.title}" if self.section_id else self.title

    def section(self, section_id: str, title: str) -> 'Section':
        """
        Get or create a child section

        Args:
            section_id: Dotted id, e.g. '8.1.2'
            title: Human readable title

        Returns:
            The child Section
        """
        for child in self.children:
            if isinstance(child, Section) and child.section_id == section_id:
                return child
        child = Section(section_id, title, parent=self)
        self.children.append(child)
        return child

    def case(self, description: str, requirement: str, expect: Iterable[Expectation],
             settings_exchange: bool = True):
        """
        Decorator to register a case in this section

        Args:
            description: What the case sends
            requirement: The normative text the SUT must satisfy
            expect: Acceptable expectations, in priority order
            settings_exchange: Complete the SETTINGS exchange before build()

        Usage:
            @section.case("Sends ...", "The endpoint MUST ...",
                          expect=connection_error(ErrorCode.FRAME_SIZE_ERROR))
            def large_data_frame(session):
                ...
        """
        def decorator(func: Callable):
            index = len(self.cases) + 1
            self.children.append(ConformanceCase(
                case_id=f"{self.section_id}/{index}",
                description=description,
                requirement=requirement,
                build=func,
                expectations=tuple(expect),
                settings_exchange=settings_exchange,
                depth=self.depth
            ))
            return func
        return decorator

    @property
    def cases(self) -> List[ConformanceCase]:
        return [c for c in self.children if isinstance(c, ConformanceCase)]

    @property
    def sections(self) -> List['Section']:
        return [c for c in self.children if isinstance(c, Section)]

    def iter_cases(self) -> Iterator[ConformanceCase]:
        """All cases in this subtree, in traversal order"""
        for child in self.children:
            if isinstance(child, Section):
                yield from child.iter_cases()
            else:
                yield child

    def iter_sections(self) -> Iterator['Section']:
        for child in self.sections:
            yield child
            yield from child.iter_sections()

    def __len__(self):
        return sum(1 for _ in self.iter_cases())

    def __repr__(self):
        return f"Section({self.section_id or '<root>'}, {len(self)} cases)"


class CaseRegistry:
    """Root of the section tree; case modules register into it on import"""

    def __init__(self, title: str = 'HTTP/2'):
        self.root = Section('', title)

    def section(self, section_id: str, title: str, parent: Optional[Section] = None) -> Section:
        return (parent or self.root).section(section_id, title)

    def find(self, node_id: str) -> Optional[Union[Section, ConformanceCase]]:
        """Look up a section or case by id"""
        for section in self.root.iter_sections():
            if section.section_id == node_id:
                return section
        for case in self.root.iter_cases():
            if case.case_id == node_id:
                return case
        return None

    def list_sections(self) -> List[Section]:
        return list(self.root.iter_sections())

    def __len__(self):
        return len(self.root)

    def __repr__(self):
        return f"CaseRegistry({len(self)} cases registered)"


# Global registry instance
registry = CaseRegistry()
