"""
Fix Executor Module for Project Healer
======================================

This module turns an ordered list of issues for one file into a candidate
content string. It works entirely in memory; writing to disk is the
caller's job.

Fix Strategies:
--------------
- PatternFix: global regular-expression replace on the current content
- DelegatedFix (or a pattern that changed nothing): ask the fix provider

Issues are applied bottom-up (descending line number), so an edit never
shifts the line that a not-yet-processed issue higher in the file refers
to. Each issue is isolated: a failure while computing its fix leaves the
content untouched and processing moves on to the next issue.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .errors import FileWriteError, FixApplicationError, ValidationFailure
from .issues import DelegatedFix, Issue, PatternFix
from .providers import FixProvider, NullFixProvider
from .validator import ValidationResult

logger = logging.getLogger(__name__)

# Receives a candidate content string, decides whether it may be kept
CandidateGate = Callable[[str], ValidationResult]

NOT_APPLIED = "fix could not be applied"


@dataclass
class IssueOutcome:
    """
    What happened to one issue in one pass.

    Attributes:
        issue: The issue
        resolved: Whether its fix is part of the final content
        method: "pattern" or "provider" for resolved issues
        note: Resolution note when resolved, failure reason otherwise
    """
    issue: Issue
    resolved: bool
    note: str
    method: Optional[str] = None


def apply_pattern_fix(content: str, fix: PatternFix) -> str:
    """
    Replace every match of the fix's regex in content.

    Raises:
        re.error: If the regex or template is invalid
    """
    return re.sub(fix.find_regex, fix.python_template(), content)


class FixExecutor:
    """
    Applies issue fixes to in-memory file content.

    Usage:
        executor = FixExecutor(fix_provider)
        content, outcomes = executor.execute("src/app.js", issues, original)
    """

    def __init__(self, fix_provider: Optional[FixProvider] = None):
        self.fix_provider = fix_provider or NullFixProvider()

    def execute(
        self,
        file: str,
        ordered_issues: List[Issue],
        original_content: str,
        gate: Optional[CandidateGate] = None
    ) -> Tuple[str, List[IssueOutcome]]:
        """
        Apply fixes for one file, one issue at a time.

        Args:
            file: Path of the file, relative to the project root
            ordered_issues: Issues for this file in descending line order
            original_content: Content the first fix applies to
            gate: Optional check each candidate must pass before it becomes
                the base for the next issue

        Returns:
            Tuple of (final_content, outcomes in processing order)
        """
        content = original_content
        outcomes: List[IssueOutcome] = []

        # Stable sort keeps the caller's order for issues on the same line
        for issue in sorted(ordered_issues, key=lambda i: i.line, reverse=True):
            try:
                candidate, method = self._fix_one(content, issue)
                if candidate == content:
                    outcomes.append(IssueOutcome(issue, False, NOT_APPLIED))
                    continue

                if gate is not None:
                    result = gate(candidate)
                    if not result.valid:
                        raise ValidationFailure(result.reason or "rejected")

                content = candidate
                outcomes.append(IssueOutcome(
                    issue, True, f"Fixed by {method}", method=method
                ))
            except FileWriteError:
                # The gate could not restore the file; the caller must recover it
                raise
            except ValidationFailure as e:
                logger.info("Rejected fix for %s: %s", issue.describe(), e.reason)
                outcomes.append(IssueOutcome(issue, False, f"Validation failed: {e.reason}"))
            except Exception as e:
                logger.error("Error fixing issue in %s:%d: %s", file, issue.line, e)
                outcomes.append(IssueOutcome(issue, False, f"Error: {e}"))

        return content, outcomes

    def _fix_one(self, content: str, issue: Issue) -> Tuple[str, str]:
        """Return (candidate, method) for one issue against content."""
        fix = issue.fix
        if isinstance(fix, PatternFix):
            fixed = apply_pattern_fix(content, fix)
            if fixed != content:
                return fixed, "pattern"
        elif not isinstance(fix, DelegatedFix):
            raise TypeError(f"Unsupported fix descriptor: {type(fix).__name__}")

        fixed = self.fix_provider.generate_fix(content, issue.file_type, issue)
        if not isinstance(fixed, str):
            raise FixApplicationError(
                f"Fix provider returned {type(fixed).__name__}, expected str"
            )
        return fixed, "provider"
