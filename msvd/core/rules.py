from __future__ import annotations
import logging
from pathlib import Path
from typing import Iterable, Sequence, Tuple

from .patterns import (
    Detector,
    REENTRANCY,
    INTEGER_OVERFLOW,
    ACCESS_CONTROL,
    UNCHECKED_ARITHMETIC,
    MISSING_ERROR_HANDLING,
    UNBOUNDED_EXECUTION,
    GENERICS_TYPE_CHECK,
    PRICE_ORACLE_MANIPULATION,
    ARITHMETIC_PRECISION,
    ACCOUNT_REGISTRATION,
    RESOURCE_MANAGEMENT,
    BUSINESS_LOGIC_FLAW,
    INCORRECT_STD_FUNCTION,
    suppressed_lines,
)
from .source import Source, read_source, list_contract_files
from .utils import FindingSet, UnknownDetectorError

logger = logging.getLogger(__name__)

Registry = Tuple[Detector, ...]

DEFAULT_DETECTORS: Registry = (
    REENTRANCY,
    INTEGER_OVERFLOW,
    ACCESS_CONTROL,
    UNCHECKED_ARITHMETIC,
    MISSING_ERROR_HANDLING,
)

EXPERIMENTAL_DETECTORS: Registry = (
    UNBOUNDED_EXECUTION,
    GENERICS_TYPE_CHECK,
    PRICE_ORACLE_MANIPULATION,
    ARITHMETIC_PRECISION,
    ACCOUNT_REGISTRATION,
    RESOURCE_MANAGEMENT,
    BUSINESS_LOGIC_FLAW,
    INCORRECT_STD_FUNCTION,
)

ALL_DETECTORS: Registry = DEFAULT_DETECTORS + EXPERIMENTAL_DETECTORS

__all__ = [
    "DEFAULT_DETECTORS",
    "EXPERIMENTAL_DETECTORS",
    "ALL_DETECTORS",
    "build_registry",
    "suppressed_lines",
    "scan_source",
    "analyze_contract",
    "analyze_directory",
    "analyze_path",
]


def build_registry(include_experimental: bool = False, only: Iterable[str] | None = None) -> Registry:
    """
    Resolve the detectors to run. `only` narrows the selection to the given
    keys (in catalogue order) and may name experimental detectors directly.
    """
    if only:
        wanted = set(only)
        known = {d.key for d in ALL_DETECTORS}
        unknown = sorted(wanted - known)
        if unknown:
            raise UnknownDetectorError(
                f"Unknown detector(s): {', '.join(unknown)}. Known: {', '.join(sorted(known))}"
            )
        registry = tuple(d for d in ALL_DETECTORS if d.key in wanted)
    elif include_experimental:
        registry = ALL_DETECTORS
    else:
        registry = DEFAULT_DETECTORS
    logger.debug("registry: %s", ", ".join(d.key for d in registry))
    return registry


def _run(src: Source, registry: Sequence[Detector]) -> FindingSet:
    out = FindingSet(issues=[])
    for det in registry:
        out.extend(det.findings(src.lines, src.path))
    return out


def scan_source(text: str, path: str = "<input>", registry: Sequence[Detector] = DEFAULT_DETECTORS) -> FindingSet:
    """Run every detector in `registry` over `text`; results concatenated in registry order."""
    return _run(Source(text, path), registry)


def analyze_contract(path: str | Path, registry: Sequence[Detector] = DEFAULT_DETECTORS) -> FindingSet:
    src = read_source(path)
    found = _run(src, registry)
    logger.debug("%s: %d finding(s)", src.path, len(found))
    return found


def analyze_directory(path: str | Path, registry: Sequence[Detector] = DEFAULT_DETECTORS) -> FindingSet:
    """
    Scan the Move files directly inside `path` (no recursion). The first file
    that cannot be read aborts the whole scan.
    """
    out = FindingSet(issues=[])
    for fp in list_contract_files(path):
        out.extend(analyze_contract(fp, registry))
    return out


def analyze_path(path: str | Path, registry: Sequence[Detector] = DEFAULT_DETECTORS) -> FindingSet:
    p = Path(path)
    if p.is_dir():
        return analyze_directory(p, registry)
    return analyze_contract(p, registry)
