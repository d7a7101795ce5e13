"""
Issue Model for Project Healer
==============================

Issues are produced fresh on every pass by the external scanner. They are
never persisted; only their identity key ``(file, line, message)`` is kept
between passes to track progress and avoid reprocessing.

Each issue carries a fix recipe modelled as an explicit sum type:

- PatternFix: a regular expression plus replacement template, applied
  globally to the file content
- DelegatedFix: no local recipe, the fix provider must produce the content
"""

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


IssueKey = Tuple[str, int, str]


class Severity(Enum):
    """How serious a detected issue is."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IssueSource(Enum):
    """Which kind of detector produced the issue."""
    PATTERN = "pattern"       # Regex pattern catalog
    DELEGATED = "delegated"   # Model-backed or other external analysis


@dataclass(frozen=True)
class PatternFix:
    """Deterministic rewrite: replace every match of find_regex."""
    find_regex: str
    replace_template: str

    def python_template(self) -> str:
        """Return the replacement template in ``re.sub`` syntax."""
        return translate_template(self.replace_template)


@dataclass(frozen=True)
class DelegatedFix:
    """No local recipe; the fix provider produces the new content."""


FixDescriptor = Union[PatternFix, DelegatedFix]


# $1, $<name>, $& and $$ as used by the pattern catalog
_DOLLAR_TOKEN = re.compile(r"\$(\$|&|\d+|<[A-Za-z_]\w*>)")


def translate_template(template: str) -> str:
    """
    Convert a catalog replacement template to ``re.sub`` syntax.

    Templates already written for Python (``\\1``, ``\\g<name>``) pass
    through unchanged. Dollar forms are translated::

        $1      -> \\g<1>
        $<name> -> \\g<name>
        $&      -> \\g<0>
        $$      -> $

    Args:
        template: Replacement template from a pattern fix

    Returns:
        Template usable as the ``repl`` argument of ``re.sub``
    """
    def _replace(match: "re.Match[str]") -> str:
        token = match.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return r"\g<0>"
        if token.startswith("<"):
            return rf"\g{token}"
        return rf"\g<{token}>"

    return _DOLLAR_TOKEN.sub(_replace, template)


@dataclass
class Issue:
    """
    A detected problem at a specific file and line.

    Attributes:
        file: Path relative to the project root
        line: 1-based line number
        message: Human readable description
        severity: How serious the issue is
        source: Which detector produced it
        fix: Fix recipe (PatternFix or DelegatedFix)
        pattern_id: Catalog id of the pattern that matched, if any
    """
    file: str
    line: int
    message: str
    severity: Severity = Severity.MEDIUM
    source: IssueSource = IssueSource.DELEGATED
    fix: FixDescriptor = field(default_factory=DelegatedFix)
    pattern_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.line, bool) or not isinstance(self.line, int) or self.line < 1:
            raise ValueError(f"Issue line must be a positive int, got {self.line!r}")
        if not isinstance(self.fix, (PatternFix, DelegatedFix)):
            raise TypeError(f"Unsupported fix descriptor: {type(self.fix).__name__}")

    @property
    def key(self) -> IssueKey:
        """Identity key used for deduplication and progress tracking."""
        return (self.file, self.line, self.message)

    @property
    def file_type(self) -> str:
        """File extension without the leading dot."""
        return os.path.splitext(self.file)[1].lstrip(".")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        """
        Build an issue from a scanner dictionary.

        Accepts the scanner's native shape::

            {"file": ..., "line": ..., "message": ..., "severity": ...,
             "source": "pattern", "patternId": ...,
             "fix": {"type": "replace", "find": ..., "replacement": ...}}

        A fix of any other shape, or no fix at all, becomes DelegatedFix.
        The legacy source value "ai" maps to IssueSource.DELEGATED.
        """
        raw_fix = data.get("fix") or {}
        fix: FixDescriptor
        if raw_fix.get("type") == "replace" and raw_fix.get("find") is not None:
            fix = PatternFix(
                find_regex=raw_fix["find"],
                replace_template=raw_fix.get("replacement", "")
            )
        else:
            fix = DelegatedFix()

        raw_source = data.get("source", "delegated")
        source = IssueSource.PATTERN if raw_source == "pattern" else IssueSource.DELEGATED

        return cls(
            file=data["file"],
            line=int(data["line"]),
            message=data.get("message", ""),
            severity=Severity(data.get("severity", "medium")),
            source=source,
            fix=fix,
            pattern_id=data.get("patternId")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the issue to the scanner dictionary shape."""
        data: Dict[str, Any] = {
            "file": self.file,
            "line": self.line,
            "message": self.message,
            "severity": self.severity.value,
            "source": self.source.value,
        }
        if self.pattern_id:
            data["patternId"] = self.pattern_id
        if isinstance(self.fix, PatternFix):
            data["fix"] = {
                "type": "replace",
                "find": self.fix.find_regex,
                "replacement": self.fix.replace_template
            }
        return data

    def describe(self) -> str:
        """Short ``file:line message`` form for log lines."""
        return f"{self.file}:{self.line} {self.message}"
