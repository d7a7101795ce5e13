"""
Logging Module for Project Healer
=================================

This module provides logging and audit trail functionality for the healing
system. It maintains a changelog of every healing action: which issues were
fixed or left unfixed and why, which files were committed, and which were
rolled back.

Features:
---------
- Structured JSON changelog for machine parsing
- Human-readable console output with indicators
- Per-pattern success tallies for tuning the pattern catalog
"""

import json
import logging
import sys
from datetime import datetime
from dataclasses import dataclass, asdict, field
from typing import Optional, List, Dict, Any
from pathlib import Path
from enum import Enum


class Severity(Enum):
    """Severity levels for healing events."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HealingEventType(Enum):
    """Types of events logged by the healing system."""
    SESSION_STARTED = "session_started"
    PASS_STARTED = "pass_started"
    ISSUE_FIXED = "issue_fixed"
    ISSUE_UNFIXED = "issue_unfixed"
    VALIDATION_FAILED = "validation_failed"
    FILE_COMMITTED = "file_committed"
    ROLLBACK_PERFORMED = "rollback_performed"
    PASS_COMPLETE = "pass_complete"
    SESSION_COMPLETE = "session_complete"


@dataclass
class HealingEvent:
    """
    Represents a single healing event in the changelog.
    """
    session_id: str                     # Healing session the event belongs to
    event_type: str                     # Type of event (from HealingEventType)
    timestamp: str                      # ISO 8601 timestamp
    severity: str                       # Severity level
    file_path: Optional[str] = None     # File the event concerns
    line_number: Optional[int] = None   # Issue line, for issue events
    message: Optional[str] = None       # Issue message or summary
    pattern_id: Optional[str] = None    # Catalog pattern behind the issue
    reason: Optional[str] = None        # Resolution note or failure reason
    pass_index: Optional[int] = None    # Which pass (1, 2, 3...)
    metadata: Dict[str, Any] = field(default_factory=dict)  # Additional context

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return asdict(self)

    def to_log_message(self) -> str:
        """Format event as a human-readable log message."""
        parts = [
            f"[{self.event_type.upper()}]",
            f"Session: {self.session_id[:20]}"
        ]

        if self.pass_index:
            parts.append(f"Pass: {self.pass_index}")

        if self.file_path:
            location = f"{self.file_path}"
            if self.line_number:
                location += f":{self.line_number}"
            parts.append(f"Location: {location}")

        if self.message:
            parts.append(self.message[:100])

        if self.reason:
            parts.append(f"Reason: {self.reason[:200]}")

        return " | ".join(parts)


class HealingLogger:
    """
    Main logger class for the healing system.

    This class manages all logging operations, including writing to
    the changelog file and console output.

    Usage:
        logger = HealingLogger(log_directory)
        logger.log_session_started(session_id)
        logger.log_issue_fixed(session_id, 1, issue, "Fixed by pattern")
    """

    # Indicators for different event types
    INDICATORS = {
        HealingEventType.SESSION_STARTED: "▶",
        HealingEventType.PASS_STARTED: "🔄",
        HealingEventType.ISSUE_FIXED: "✅",
        HealingEventType.ISSUE_UNFIXED: "⚠️",
        HealingEventType.VALIDATION_FAILED: "❌",
        HealingEventType.FILE_COMMITTED: "💾",
        HealingEventType.ROLLBACK_PERFORMED: "↩️",
        HealingEventType.PASS_COMPLETE: "✓",
        HealingEventType.SESSION_COMPLETE: "🎉",
    }

    def __init__(
        self,
        log_directory: str = ".project-healer-logs",
        changelog_file: str = "healing_changelog.json",
        verbose: bool = True,
        log_to_console: bool = True,
        log_to_file: bool = True
    ):
        """
        Initialize the healing logger.

        Args:
            log_directory: Directory to store log files
            changelog_file: Name of the changelog JSON file
            verbose: Whether to log at DEBUG level
            log_to_console: Whether to output logs to console
            log_to_file: Whether to write logs and the changelog to files
        """
        self.log_directory = Path(log_directory)
        self.changelog_file = self.log_directory / changelog_file
        self.verbose = verbose
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file

        if self.log_to_file:
            self.log_directory.mkdir(parents=True, exist_ok=True)
            if not self.changelog_file.exists():
                self._initialize_changelog()

        self._setup_python_logging()

    def _setup_python_logging(self) -> None:
        """Configure the package logger for console and file output."""
        self.python_logger = logging.getLogger("project_healer")
        self.python_logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

        # Remove existing handlers to avoid duplicates
        for handler in list(self.python_logger.handlers):
            self.python_logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        if self.log_to_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.DEBUG if self.verbose else logging.INFO)
            console_handler.setFormatter(formatter)
            self.python_logger.addHandler(console_handler)

        if self.log_to_file:
            file_handler = logging.FileHandler(
                self.log_directory / "project_healer.log",
                encoding="utf-8"
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            self.python_logger.addHandler(file_handler)

    def _initialize_changelog(self) -> None:
        """Create an empty changelog file with metadata."""
        initial_data = {
            "metadata": {
                "created": datetime.now().isoformat(),
                "version": "1.0.0",
                "description": "Project Healer Changelog"
            },
            "events": []
        }
        with open(self.changelog_file, 'w', encoding='utf-8') as f:
            json.dump(initial_data, f, indent=2)

    def _log_event(self, event: HealingEvent) -> None:
        """
        Log a healing event to all configured destinations.

        Args:
            event: The HealingEvent to log
        """
        indicator = self.INDICATORS.get(HealingEventType(event.event_type), "📝")
        log_level = getattr(logging, event.severity, logging.INFO)
        self.python_logger.log(log_level, f"{indicator} {event.to_log_message()}")

        if self.log_to_file:
            self._append_to_changelog(event)

    def _append_to_changelog(self, event: HealingEvent) -> None:
        """Append an event to the changelog JSON file."""
        try:
            with open(self.changelog_file, 'r', encoding='utf-8') as f:
                changelog = json.load(f)

            changelog["events"].append(event.to_dict())

            with open(self.changelog_file, 'w', encoding='utf-8') as f:
                json.dump(changelog, f, indent=2)
        except (OSError, ValueError, KeyError) as e:
            self.python_logger.error(f"Failed to write to changelog: {e}")

    def _event(self, session_id: str, event_type: HealingEventType,
               severity: Severity, **fields: Any) -> None:
        self._log_event(HealingEvent(
            session_id=session_id,
            event_type=event_type.value,
            timestamp=datetime.now().isoformat(),
            severity=severity.value,
            **fields
        ))

    def log_session_started(self, session_id: str, issue_count: int,
                            dry_run: bool = False) -> None:
        """
        Log the start of a healing session.

        Args:
            session_id: Session identifier
            issue_count: Number of issues known at the start
            dry_run: Whether changes will be committed
        """
        self._event(
            session_id, HealingEventType.SESSION_STARTED, Severity.INFO,
            message=f"Healing {issue_count} issue(s){' [DRY RUN]' if dry_run else ''}",
            metadata={"issue_count": issue_count, "dry_run": dry_run}
        )

    def log_pass_started(self, session_id: str, pass_index: int, issue_count: int) -> None:
        """Log the start of a healing pass."""
        self._event(
            session_id, HealingEventType.PASS_STARTED, Severity.INFO,
            pass_index=pass_index,
            message=f"Attempting to fix {issue_count} issue(s)"
        )

    def log_issue_fixed(self, session_id: str, pass_index: int, issue: Any,
                        resolution: str) -> None:
        """
        Log that an issue was fixed and committed.

        Args:
            session_id: Session identifier
            pass_index: Current pass
            issue: The fixed Issue
            resolution: How it was fixed
        """
        self._event(
            session_id, HealingEventType.ISSUE_FIXED, Severity.INFO,
            pass_index=pass_index,
            file_path=issue.file,
            line_number=issue.line,
            message=issue.message,
            pattern_id=issue.pattern_id,
            reason=resolution
        )

    def log_issue_unfixed(self, session_id: str, pass_index: int, issue: Any,
                          reason: str) -> None:
        """
        Log that an issue was left unfixed.

        Args:
            session_id: Session identifier
            pass_index: Current pass
            issue: The unfixed Issue
            reason: Why it was not fixed
        """
        self._event(
            session_id, HealingEventType.ISSUE_UNFIXED, Severity.WARNING,
            pass_index=pass_index,
            file_path=issue.file,
            line_number=issue.line,
            message=issue.message,
            pattern_id=issue.pattern_id,
            reason=reason
        )

    def log_validation_failed(self, session_id: str, pass_index: int, file_path: str,
                              reason: str, checks_run: Optional[List[str]] = None) -> None:
        """
        Log that a candidate change was rejected by the validation gate.

        Args:
            session_id: Session identifier
            pass_index: Current pass
            file_path: File the candidate was for
            reason: Validator output
            checks_run: Check kinds executed before the rejection
        """
        self._event(
            session_id, HealingEventType.VALIDATION_FAILED, Severity.WARNING,
            pass_index=pass_index,
            file_path=file_path,
            reason=reason,
            metadata={"checks_run": checks_run or []}
        )

    def log_file_committed(self, session_id: str, pass_index: int, file_path: str,
                           fixed_count: int, backup_id: Optional[str] = None) -> None:
        """Log that a file's fixed content was written to disk."""
        self._event(
            session_id, HealingEventType.FILE_COMMITTED, Severity.INFO,
            pass_index=pass_index,
            file_path=file_path,
            message=f"Committed {fixed_count} fix(es)",
            metadata={"backup_id": backup_id}
        )

    def log_rollback(self, session_id: str, file_path: Optional[str], reason: str,
                     metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Log that a rollback was performed.

        Args:
            session_id: Session identifier
            file_path: File rolled back, or None for a whole session
            reason: Why the rollback was performed
            metadata: Additional context (e.g. rollback counts)
        """
        self._event(
            session_id, HealingEventType.ROLLBACK_PERFORMED, Severity.WARNING,
            file_path=file_path,
            message=f"Rolled back {file_path or 'session'}",
            reason=reason,
            metadata=metadata or {}
        )

    def log_pass_complete(self, session_id: str, pass_index: int,
                          fixed_count: int, unfixed_count: int) -> None:
        """Log the end of a healing pass."""
        self._event(
            session_id, HealingEventType.PASS_COMPLETE, Severity.INFO,
            pass_index=pass_index,
            message=f"Fixed {fixed_count} issue(s), {unfixed_count} not fixed",
            metadata={"fixed": fixed_count, "unfixed": unfixed_count}
        )

    def log_session_complete(self, session_id: str, status: str, passes: int,
                             fixed_count: int, unfixed_count: int) -> None:
        """
        Log that the healing session is over.

        Args:
            session_id: Session identifier
            status: Final session status
            passes: Number of passes executed
            fixed_count: Total fixed issues
            unfixed_count: Total unfixed issue reports
        """
        self._event(
            session_id, HealingEventType.SESSION_COMPLETE,
            Severity.INFO if status == "completed" else Severity.ERROR,
            message=(f"Total passes: {passes}, issues fixed: {fixed_count}, "
                     f"issues not fixed: {unfixed_count}"),
            reason=status,
            metadata={
                "status": status,
                "passes": passes,
                "fixed": fixed_count,
                "unfixed": unfixed_count
            }
        )

    def get_changelog(self) -> Dict[str, Any]:
        """
        Read the entire changelog.

        Returns:
            The changelog data as a dictionary
        """
        try:
            with open(self.changelog_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            self.python_logger.error(f"Failed to read changelog: {e}")
            return {"metadata": {}, "events": []}

    def get_statistics(self) -> Dict[str, Any]:
        """
        Calculate statistics from the changelog.

        Returns:
            Dictionary with statistics about healing activities
        """
        events = self.get_changelog().get("events", [])

        def count(event_type: HealingEventType) -> int:
            return len([e for e in events if e.get("event_type") == event_type.value])

        fixed = count(HealingEventType.ISSUE_FIXED)
        unfixed = count(HealingEventType.ISSUE_UNFIXED)

        # Per-pattern tallies
        patterns: Dict[str, Dict[str, int]] = {}
        for event in events:
            pattern_id = event.get("pattern_id")
            if not pattern_id:
                continue
            tally = patterns.setdefault(pattern_id, {"fixed": 0, "unfixed": 0})
            if event.get("event_type") == HealingEventType.ISSUE_FIXED.value:
                tally["fixed"] += 1
            elif event.get("event_type") == HealingEventType.ISSUE_UNFIXED.value:
                tally["unfixed"] += 1

        sessions = [
            e for e in events
            if e.get("event_type") == HealingEventType.SESSION_COMPLETE.value
        ]

        return {
            "total_sessions": len(sessions),
            "completed_sessions": len([s for s in sessions if s.get("reason") == "completed"]),
            "rolled_back_sessions": len([s for s in sessions if s.get("reason") == "rolled_back"]),
            "issues_fixed": fixed,
            "issues_unfixed": unfixed,
            "success_rate": (
                fixed / (fixed + unfixed) * 100
                if (fixed + unfixed) > 0 else 0
            ),
            "rollbacks": count(HealingEventType.ROLLBACK_PERFORMED),
            "patterns": patterns
        }

    def clear_changelog(self) -> None:
        """Clear the changelog file (for testing or reset)."""
        self.log_directory.mkdir(parents=True, exist_ok=True)
        self._initialize_changelog()
