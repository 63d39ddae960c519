from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Iterator, Set


class MsvdError(Exception):
    """Base class for errors raised by the analyzer."""


class AnalysisError(MsvdError):
    """A contract file or directory could not be read."""


class UnsupportedFormatError(MsvdError, ValueError):
    pass


class UnknownDetectorError(MsvdError, ValueError):
    pass


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFO = "Info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __str__(self) -> str:
        return self.value


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
    Severity.INFO: 4,
}


@dataclass(frozen=True)
class Location:
    file: str
    line: int          # 1-indexed
    column: int = 0    # no lexical column tracking


@dataclass(frozen=True)
class Finding:
    severity: Severity
    title: str
    description: str
    location: Location
    recommendation: str

    @property
    def line(self) -> int:
        return self.location.line

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "location": {
                "file": self.location.file,
                "line": self.location.line,
                "column": self.location.column,
            },
            "recommendation": self.recommendation,
        }


@dataclass
class FindingSet:
    issues: List[Finding] = field(default_factory=list)

    def add(self, issue: Finding) -> None:
        self.issues.append(issue)

    def extend(self, issues) -> None:
        self.issues.extend(issues)

    def __iter__(self) -> Iterator[Finding]:
        return iter(self.issues)

    def __len__(self) -> int:
        return len(self.issues)

    def lines(self) -> Set[int]:
        return {it.location.line for it in self.issues}

    def by_severity(self) -> List[Finding]:
        return sorted(self.issues, key=lambda x: x.severity.rank)

    def grouped(self) -> Dict[str, List[Finding]]:
        """Findings keyed by title, titles in first-seen order."""
        out: Dict[str, List[Finding]] = {}
        for it in self.issues:
            out.setdefault(it.title, []).append(it)
        return out

    def severity_counts(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for it in self.issues:
            counts[it.severity.value] += 1
        return counts
