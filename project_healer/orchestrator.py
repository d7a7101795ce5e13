"""
Pass Controller Module for Project Healer
=========================================

This module provides the controller that coordinates all components of
the healing system. It drives the scan -> order -> fix -> validate ->
commit loop over a bounded number of passes.

Workflow:
---------
1. Issue Collection -> Supplied by the caller or pulled from the scanner
2. Scheduling -> Files by issue count, issues bottom-up within a file
3. Backup -> Each file is backed up before anything touches it
4. Fix Generation -> Pattern rewrite or fix provider, one issue at a time
5. Validation -> Every candidate must pass the project's checks
6. Commit -> The validated content is written through the rollback manager
7. Rescan -> The next pass works on what the scanner still reports

The loop stops when no issues remain, when a pass fixes nothing, or at
the pass ceiling.

Failure handling:
-----------------
- A failure while fixing one issue leaves that issue unfixed
- A failure while handling one file leaves that file's issues unfixed and
  restores the file to its content at the start of the pass
- A scanner failure between passes ends the loop; fixes committed so far
  are kept and the error is recorded on the report
- A project root that disappears mid-run is re-raised with the session
  left open for recovery
- Any other unexpected error rolls back the whole session and is re-raised
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .backup_store import read_source, write_source
from .config import HealerConfig
from .errors import FileWriteError, HealerError, ProjectNotFound
from .executor import FixExecutor
from .issues import Issue, IssueKey
from .logger import HealingLogger
from .providers import FixProvider, HttpFixProvider, Scanner
from .rollback import RollbackManager, RollbackStats
from .scheduler import IssueScheduler
from .validator import ValidationResult, ValidatorGate

FILE_MISSING = "File does not exist"


@dataclass
class FixedIssue:
    """An issue whose fix is on disk (or would be, in dry-run mode)."""
    issue: Issue
    resolution: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.issue.to_dict()
        data["resolution"] = self.resolution
        return data


@dataclass
class UnfixedIssue:
    """An issue that could not be fixed, with the reason."""
    issue: Issue
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.issue.to_dict()
        data["reason"] = self.reason
        return data


@dataclass
class PassResult:
    """Outcome of a single healing pass."""
    pass_index: int
    fixed: List[FixedIssue] = field(default_factory=list)
    unfixed: List[UnfixedIssue] = field(default_factory=list)


@dataclass
class HealingReport:
    """
    Outcome of a whole apply_fixes call.

    Attributes:
        fixed: Fixed issues in the order they were fixed
        unfixed: Issues still unfixed at the end, last reason per issue
        passes: Number of passes executed, including a final pass that
            fixed nothing
        session_id: Healing session the changes belong to
        dry_run: Whether changes were left uncommitted
        error: Why the loop stopped early, if it did
    """
    fixed: List[FixedIssue] = field(default_factory=list)
    unfixed: List[UnfixedIssue] = field(default_factory=list)
    passes: int = 0
    session_id: Optional[str] = None
    dry_run: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixed": [f.to_dict() for f in self.fixed],
            "unfixed": [u.to_dict() for u in self.unfixed],
            "passes": self.passes,
            "session_id": self.session_id,
            "dry_run": self.dry_run,
            "error": self.error
        }


class PassController:
    """
    Main controller for multi-pass healing of a project tree.

    Usage:
        controller = PassController(project_root, scanner, fix_provider)
        report = controller.apply_fixes()
        print(f"Fixed {len(report.fixed)} issues in {report.passes} passes")
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        scanner: Optional[Scanner] = None,
        fix_provider: Optional[FixProvider] = None,
        config: Optional[HealerConfig] = None,
        logger: Optional[HealingLogger] = None,
        rollback_manager: Optional[RollbackManager] = None,
        validator: Optional[ValidatorGate] = None
    ):
        """
        Initialize the pass controller.

        Args:
            project_root: Root of the project to heal
            scanner: Issue source, re-invoked between passes
            fix_provider: Fix generator for delegated issues
            config: Configuration settings (defaults if None)
            logger: Audit logger (built from config if None)
            rollback_manager: Session store (built from config if None)
            validator: Validation gate (built from config if None)

        Raises:
            ProjectNotFound: If project_root is not a directory
        """
        root = Path(project_root)
        if not root.is_dir():
            raise ProjectNotFound(str(project_root))

        self.project_root = root.resolve()
        self.scanner = scanner
        self.config = config or HealerConfig()

        # Initialize components
        self.logger = logger or self._build_logger()
        self.rollback = rollback_manager or RollbackManager(
            self.project_root,
            backup_dir_name=self.config.backup.directory,
            log_file=self.config.backup.log_file
        )
        self.validator = validator or ValidatorGate(self.project_root, self.config.validation)
        self.executor = FixExecutor(fix_provider)
        self.scheduler = IssueScheduler()

    def _build_logger(self) -> HealingLogger:
        log_directory = Path(self.config.logging.log_directory)
        if not log_directory.is_absolute():
            log_directory = self.project_root / log_directory
        return HealingLogger(
            log_directory=str(log_directory),
            changelog_file=self.config.logging.changelog_file,
            verbose=self.config.logging.verbose,
            log_to_console=self.config.logging.log_to_console,
            log_to_file=self.config.logging.log_to_file
        )

    def _rescan(self) -> List[Issue]:
        if self.scanner is None:
            return []
        return self.scanner.scan()

    def apply_fixes(self, issues: Optional[Iterable[Issue]] = None) -> HealingReport:
        """
        Fix issues over up to max_passes passes.

        Args:
            issues: Issues to start with; the scanner is asked when None

        Returns:
            HealingReport with fixed/unfixed issues and the pass count

        Raises:
            ProjectNotFound: If the project root disappeared; a session
                already started is left in progress
        """
        if not self.project_root.is_dir():
            raise ProjectNotFound(str(self.project_root))

        self._recover_interrupted_sessions()

        remaining = self.scheduler.deduplicate(
            self._rescan() if issues is None else issues
        )
        dry_run = self.config.safety.dry_run
        max_passes = self.config.passes.max_passes

        session_id = self.rollback.start_session()
        report = HealingReport(session_id=session_id, dry_run=dry_run)
        self.logger.log_session_started(session_id, len(remaining), dry_run)

        fixed_keys: Set[IssueKey] = set()
        last_reasons: Dict[IssueKey, UnfixedIssue] = {}

        try:
            while remaining and report.passes < max_passes:
                if not self.project_root.is_dir():
                    raise ProjectNotFound(str(self.project_root))
                report.passes += 1
                result = self.run_pass(session_id, remaining, report.passes)

                report.fixed.extend(result.fixed)
                fixed_keys.update(f.issue.key for f in result.fixed)
                for unfixed in result.unfixed:
                    last_reasons[unfixed.issue.key] = unfixed

                if not result.fixed:
                    break
                # A rescan cannot see uncommitted changes
                if dry_run:
                    break

                try:
                    rescanned = self._rescan()
                except Exception as e:
                    report.error = f"Rescan after pass {report.passes} failed: {e}"
                    self.logger.python_logger.error(report.error)
                    break
                remaining = self.scheduler.filter_remaining(
                    self.scheduler.deduplicate(rescanned), fixed_keys
                )
        except ProjectNotFound:
            # Session stays in progress; the next run recovers it
            self.logger.log_session_complete(
                session_id, "interrupted", report.passes,
                len(report.fixed), len(last_reasons)
            )
            raise
        except Exception as e:
            stats = self.rollback.rollback_session(session_id)
            self.logger.log_rollback(
                session_id, None, f"Unexpected error: {e}",
                metadata={"succeeded": stats.succeeded, "failed": stats.failed}
            )
            self.logger.log_session_complete(
                session_id, "rolled_back", report.passes,
                len(report.fixed), len(last_reasons)
            )
            raise

        self.rollback.end_session(session_id, success=True)

        report.unfixed = [u for key, u in last_reasons.items() if key not in fixed_keys]
        self.logger.log_session_complete(
            session_id, "completed", report.passes, len(report.fixed), len(report.unfixed)
        )
        return report

    def run_pass(self, session_id: str, issues: Iterable[Issue], pass_index: int = 1) -> PassResult:
        """
        Run one healing pass over a set of issues.

        Args:
            session_id: Open session the changes belong to
            issues: Issues to work on
            pass_index: 1-based pass number, for reporting

        Returns:
            PassResult for this pass
        """
        plan = self.scheduler.schedule(issues)
        result = PassResult(pass_index=pass_index)
        self.logger.log_pass_started(
            session_id, pass_index, sum(len(file_issues) for _, file_issues in plan)
        )

        for file, file_issues in plan:
            self._process_file(session_id, pass_index, file, file_issues, result)

        self.logger.log_pass_complete(
            session_id, pass_index, len(result.fixed), len(result.unfixed)
        )
        return result

    def _skip_reason(self, path: Path) -> Optional[str]:
        """Return why a file must not be touched, or None."""
        if self.config.is_path_protected(str(path)):
            return "Path is protected"
        if not path.is_file():
            return FILE_MISSING
        max_size = self.config.safety.max_file_size_kb
        if os.path.getsize(path) > max_size * 1024:
            return f"File exceeds maximum size of {max_size} KB"
        return None

    def _process_file(
        self,
        session_id: str,
        pass_index: int,
        file: str,
        issues: List[Issue],
        result: PassResult
    ) -> None:
        """Fix, validate and commit one file's issues."""
        path = Path(file)
        if not path.is_absolute():
            path = self.project_root / path

        skip_reason = self._skip_reason(path)
        if skip_reason:
            for issue in issues:
                self._mark_unfixed(session_id, pass_index, issue, skip_reason, result)
            return

        original: Optional[str] = None
        try:
            self.rollback.backup_file(file, session_id)
            original = read_source(path)

            def gate(candidate: str) -> ValidationResult:
                outcome = self.validator.validate(path, original, candidate)
                if not outcome.valid:
                    self.logger.log_validation_failed(
                        session_id, pass_index, file, outcome.reason or "", outcome.checks_run
                    )
                return outcome

            final_content, outcomes = self.executor.execute(file, issues, original, gate)
        except (HealerError, OSError, ValueError) as e:
            for issue in issues:
                self._mark_unfixed(session_id, pass_index, issue, f"Error: {e}", result)
            if original is not None:
                self._restore_file(session_id, file, path, original, str(e))
            return

        resolved = [o for o in outcomes if o.resolved]
        for outcome in outcomes:
            if not outcome.resolved:
                self._mark_unfixed(session_id, pass_index, outcome.issue, outcome.note, result)

        if not resolved:
            return

        if final_content != original and not self.config.safety.dry_run:
            applied = self.rollback.apply_fix(file, final_content, session_id)
            if not applied.success:
                reason = f"Error writing to file: {applied.error}"
                for outcome in resolved:
                    self._mark_unfixed(session_id, pass_index, outcome.issue, reason, result)
                if applied.backup_id:
                    self._restore_file(session_id, file, path, original, reason)
                return
            self.logger.log_file_committed(
                session_id, pass_index, file, len(resolved), applied.backup_id
            )

        for outcome in resolved:
            result.fixed.append(FixedIssue(outcome.issue, outcome.note))
            self.logger.log_issue_fixed(session_id, pass_index, outcome.issue, outcome.note)

    def _mark_unfixed(
        self,
        session_id: str,
        pass_index: int,
        issue: Issue,
        reason: str,
        result: PassResult
    ) -> None:
        result.unfixed.append(UnfixedIssue(issue, reason))
        self.logger.log_issue_unfixed(session_id, pass_index, issue, reason)

    def _restore_file(self, session_id: str, file: str, path: Path, content: str,
                      reason: str) -> None:
        """
        Put a file back to its content at the start of the pass.

        Earlier passes may have committed fixes the session backup predates.
        """
        try:
            write_source(path, content)
            restored = True
        except FileWriteError as e:
            self.logger.python_logger.error(f"Could not restore {file}: {e.reason}")
            restored = False
        self.logger.log_rollback(session_id, file, reason, metadata={"restored": restored})

    def _recover_interrupted_sessions(self) -> None:
        """Report sessions left in progress by a killed run, rolling back if configured."""
        for session in self.rollback.find_interrupted_sessions():
            if self.config.backup.auto_rollback_interrupted:
                stats = self.rollback.rollback_session(session.id)
                self.logger.log_rollback(
                    session.id, None, "Interrupted session",
                    metadata={"succeeded": stats.succeeded, "failed": stats.failed}
                )
            else:
                self.logger.python_logger.warning(
                    f"Session {session.id} was interrupted; "
                    f"{len(session.files)} file(s) can be restored with abort()"
                )

    def abort(self, session_id: str) -> RollbackStats:
        """
        Roll back every change made by a session.

        Args:
            session_id: Session to roll back

        Returns:
            RollbackStats with succeeded/failed/total counts
        """
        stats = self.rollback.rollback_session(session_id)
        self.logger.log_rollback(
            session_id, None, "Aborted",
            metadata={"succeeded": stats.succeeded, "failed": stats.failed}
        )
        return stats

    def purge_old_backups(self) -> int:
        """Delete backups of rolled-back sessions past the retention period."""
        return self.rollback.purge_sessions(self.config.backup.retention_days)

    def get_statistics(self) -> Dict[str, Any]:
        """Get healing statistics from the changelog."""
        return self.logger.get_statistics()

    def get_changelog(self) -> Dict[str, Any]:
        """Get the full changelog of healing events."""
        return self.logger.get_changelog()


def create_healer(
    project_root: Union[str, Path],
    scanner: Optional[Scanner] = None,
    **kwargs
) -> PassController:
    """
    Factory function to create a configured pass controller.

    Configuration comes from PROJECT_HEALER_* environment variables.
    A remote fix provider is used when an endpoint is configured.

    Args:
        project_root: Root of the project to heal
        scanner: Issue source
        **kwargs: Configuration overrides (dry_run, max_passes,
            log_directory, verbose, fix_provider)

    Returns:
        Configured PassController
    """
    config = HealerConfig.from_env()

    # Apply overrides
    if "dry_run" in kwargs:
        config.safety.dry_run = kwargs["dry_run"]
    if "max_passes" in kwargs:
        config.passes.max_passes = kwargs["max_passes"]
    if "log_directory" in kwargs:
        config.logging.log_directory = kwargs["log_directory"]
    if "verbose" in kwargs:
        config.logging.verbose = kwargs["verbose"]

    fix_provider = kwargs.get("fix_provider")
    if fix_provider is None and config.provider.endpoint:
        fix_provider = HttpFixProvider(
            config.provider.endpoint,
            api_key=config.provider.api_key,
            timeout=config.provider.timeout_seconds
        )

    return PassController(
        project_root,
        scanner=scanner,
        fix_provider=fix_provider,
        config=config
    )
