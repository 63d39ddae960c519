from __future__ import annotations
import logging
from pathlib import Path
from typing import List

from .utils import AnalysisError

logger = logging.getLogger(__name__)

CONTRACT_SUFFIX = ".move"


class Source:
    def __init__(self, text: str, path: str | None = None):
        self.path = path or "<input>"
        self.lines = split_lines(text)


def split_lines(text: str) -> List[str]:
    """
    Physical lines of `text`. Breaks only on "\\n" and "\\r\\n"; a lone "\\r"
    stays inside its line, and so do form feeds or unicode separators that
    str.splitlines() would break on. A trailing newline does not produce an
    extra line.
    """
    if not text:
        return []
    s = text.replace("\r\n", "\n")
    if s.endswith("\n"):
        s = s[:-1]
    return s.split("\n")


def read_source(path: str | Path) -> Source:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise AnalysisError(f"Failed to read file: {p}: {e}") from e
    return Source(text, str(p))


def is_contract_file(path: Path) -> bool:
    return path.is_file() and path.suffix == CONTRACT_SUFFIX


def list_contract_files(directory: str | Path) -> List[Path]:
    """Direct children of `directory` that look like Move sources, sorted by name."""
    d = Path(directory)
    try:
        entries = sorted(d.iterdir())
    except OSError as e:
        raise AnalysisError(f"Failed to read directory: {d}: {e}") from e
    out: List[Path] = []
    for entry in entries:
        if is_contract_file(entry):
            out.append(entry)
        else:
            logger.debug("skipping %s", entry)
    return out
