"""Post-hoc answer validation.

These checks run after the chat adapter returns. A failed check rejects the
answer with a typed error; nothing is retried.
"""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath, PureWindowsPath

from autonav.exceptions import (
    ConfidenceBelowThresholdError,
    InvalidSourcePathError,
    SourceNotFoundError,
)
from autonav.models import NavigatorResponse

# Text that reliably means a template was echoed instead of documentation
PLACEHOLDER_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"lorem ipsum", re.IGNORECASE), "Lorem ipsum placeholder text"),
    (re.compile(r"todo:?\s*replace", re.IGNORECASE), "TODO replace instruction"),
    (re.compile(r"\$\{YOUR_[A-Z_]+\}", re.IGNORECASE), "Shell variable placeholder"),
    (re.compile(r"\[INSERT[_ ]", re.IGNORECASE), "Insert placeholder"),
    (re.compile(r"\[REPLACE[_ ]", re.IGNORECASE), "Replace placeholder"),
    (re.compile(r"\bplaceholder\b", re.IGNORECASE), 'Word "placeholder"'),
)


def is_safe_source_path(file: str) -> bool:
    """True if `file` is relative and has no parent-directory segments.

    >>> is_safe_source_path("deploy/guide.md")
    True
    >>> is_safe_source_path("../secrets.txt")
    False
    >>> is_safe_source_path("/etc/passwd")
    False
    """
    if not file or file.startswith(("/", "\\")):
        return False
    if PurePosixPath(file).is_absolute() or PureWindowsPath(file).drive:
        return False
    parts = re.split(r"[\\/]", file)
    return ".." not in parts


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def validate_sources(answer: NavigatorResponse, knowledge_base_path: Path) -> None:
    """Check that every cited source is a file inside the knowledge base.

    Path shape is checked first, so a traversing or absolute path is
    rejected whether or not it exists. A file may also sit next to the
    knowledge base, in the navigator directory itself.

    Args:
        answer: The answer to check.
        knowledge_base_path: Knowledge base root.

    Raises:
        InvalidSourcePathError: A path is absolute, traverses upward, or
            resolves outside the navigator (e.g. through a symlink).
        SourceNotFoundError: A cited file does not exist.
    """
    for source in answer.sources:
        if not is_safe_source_path(source.file):
            raise InvalidSourcePathError(source.file)

    navigator_root = knowledge_base_path.parent
    for source in answer.sources:
        for root in (knowledge_base_path, navigator_root):
            candidate = root / source.file
            if candidate.is_file():
                if not _is_within(candidate, root):
                    raise InvalidSourcePathError(source.file)
                break
        else:
            raise SourceNotFoundError(source.file)


def validate_confidence(answer: NavigatorResponse, floor: float) -> None:
    """Reject answers whose confidence is below `floor` (equal passes).

    Raises:
        ConfidenceBelowThresholdError: If answer.confidence < floor.
    """
    if answer.confidence < floor:
        raise ConfidenceBelowThresholdError(answer.confidence, floor)


def find_placeholder_text(answer: NavigatorResponse) -> list[str]:
    """Describe template placeholders found in the answer or source notes."""
    findings: list[str] = []
    for pattern, description in PLACEHOLDER_PATTERNS:
        if pattern.search(answer.answer):
            findings.append(description)
        for source in answer.sources:
            if pattern.search(source.relevance):
                findings.append(f"{description} in relevance for {source.file}")
    return findings
