"""
Issue scheduling for a healing pass.

Two independent orderings are produced:

- Cross-file: files with more issues are visited first. This is only a
  heuristic for getting the most fixes out of a pass.
- Intra-file: issues are sorted by descending line number. This one is a
  correctness requirement, because fixing bottom-up means an edit never
  moves a line that a pending issue above it refers to.

Line position says nothing about real dependencies between issues, so no
dependency graph is built from it.
"""

from typing import Dict, Iterable, List, Set, Tuple

from .issues import Issue, IssueKey


class IssueScheduler:
    """Orders issues for safe, deterministic application."""

    @staticmethod
    def group_by_file(issues: Iterable[Issue]) -> Dict[str, List[Issue]]:
        """Group issues by file, keeping files in first-seen order."""
        grouped: Dict[str, List[Issue]] = {}
        for issue in issues:
            grouped.setdefault(issue.file, []).append(issue)
        return grouped

    @staticmethod
    def order_files(grouped: Dict[str, List[Issue]]) -> List[str]:
        """Files by descending issue count; ties keep first-seen order."""
        return sorted(grouped, key=lambda file: len(grouped[file]), reverse=True)

    @staticmethod
    def order_issues(issues: Iterable[Issue]) -> List[Issue]:
        """Issues by descending line number; ties keep their input order."""
        return sorted(issues, key=lambda issue: issue.line, reverse=True)

    def schedule(self, issues: Iterable[Issue]) -> List[Tuple[str, List[Issue]]]:
        """
        Build the processing plan for one pass.

        Returns:
            List of (file, issues in descending line order), files in
            descending issue-count order
        """
        grouped = self.group_by_file(issues)
        return [(file, self.order_issues(grouped[file])) for file in self.order_files(grouped)]

    @staticmethod
    def deduplicate(issues: Iterable[Issue]) -> List[Issue]:
        """Drop issues whose identity key was already seen."""
        seen: Set[IssueKey] = set()
        unique: List[Issue] = []
        for issue in issues:
            if issue.key not in seen:
                seen.add(issue.key)
                unique.append(issue)
        return unique

    @staticmethod
    def filter_remaining(issues: Iterable[Issue], fixed_keys: Set[IssueKey]) -> List[Issue]:
        """Drop issues whose identity key matches an already-fixed issue."""
        return [issue for issue in issues if issue.key not in fixed_keys]
