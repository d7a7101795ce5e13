"""
Validation Gate Module for Project Healer
=========================================

This module checks that a candidate file change does not break the
project's own checks.

Validation Process:
------------------
1. Write the candidate content to the file
2. Run the detected lint command
3. Run the detected type-check command
4. Run the detected test command
5. Run any registered in-process validators
6. Restore the original content (always, whatever happened above)

The first failing step stops the run and its combined output becomes the
rejection reason. The gate never leaves a candidate on disk: committing a
change is the caller's explicit job. A project without any checks passes
immediately.

Every command is bounded by a wall-clock timeout. A command that runs
over has its whole process tree killed and counts as a failed check.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

import psutil

from .backup_store import write_source
from .config import ValidationConfig
from .errors import FileWriteError
from .project import CheckSet, ProjectMetadata

logger = logging.getLogger(__name__)

# Prefix of the rejection reason per check kind
FAILURE_LABELS = {
    "lint": "Linting",
    "type_check": "Type checking",
    "test": "Tests",
}


@dataclass
class ValidationResult:
    """
    Result of validating a candidate change.

    Attributes:
        valid: Whether every check passed
        reason: Why the candidate was rejected (None when valid)
        checks_run: Check kinds that were executed, in order
        duration_seconds: How long validation took
    """
    valid: bool
    reason: Optional[str] = None
    checks_run: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass
class CommandResult:
    """Outcome of one check command."""
    success: bool
    output: str
    timed_out: bool = False


def _kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(procs, timeout=5)


def run_command(command: str, cwd: Union[str, Path], timeout: float) -> CommandResult:
    """
    Run a shell command with combined stdout/stderr and a timeout.

    Args:
        command: Shell command line
        cwd: Working directory
        timeout: Seconds before the command's process tree is killed

    Returns:
        CommandResult; never raises for command failures
    """
    try:
        process = subprocess.Popen(
            command,
            shell=True,
            cwd=str(cwd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace"
        )
    except OSError as e:
        return CommandResult(success=False, output=f"Could not start '{command}': {e}")

    try:
        output, _ = process.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, command)
        _kill_process_tree(process.pid)
        try:
            output, _ = process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            output = ""
        return CommandResult(success=False, output=output or "", timed_out=True)

    return CommandResult(success=process.returncode == 0, output=output or "")


class ValidatorGate:
    """
    Runs project checks against a candidate file state.

    Usage:
        gate = ValidatorGate(project_root)
        result = gate.validate("src/app.js", original, candidate)
        if not result.valid:
            print("Rejected:", result.reason)
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        config: Optional[ValidationConfig] = None,
        metadata: Optional[ProjectMetadata] = None
    ):
        """
        Initialize the gate.

        Args:
            project_root: Project root; commands run here
            config: Validation settings (timeout, explicit commands)
            metadata: Check detection (defaults to ProjectMetadata)
        """
        self.project_root = Path(project_root)
        self.config = config or ValidationConfig()
        self.metadata = metadata or ProjectMetadata(self.project_root, self.config)
        self.checks = CheckSet()
        self.refresh_checks()

        # In-process validators: take a file path, return an error or None
        self._custom_validators: List[Callable[[Path], Optional[str]]] = []

    def refresh_checks(self) -> CheckSet:
        """Re-detect the project's check commands."""
        self.checks = self.metadata.detect_checks() if self.config.enabled else CheckSet()
        return self.checks

    def register_validator(self, validator: Callable[[Path], Optional[str]]) -> None:
        """
        Register a custom validator function.

        The validator takes the file path (with the candidate content on
        disk) and returns None if valid, or an error message string.
        """
        self._custom_validators.append(validator)

    def has_checks(self) -> bool:
        return self.config.enabled and (
            not self.checks.is_empty() or bool(self._custom_validators)
        )

    def validate(
        self,
        file: Union[str, Path],
        original_content: str,
        candidate_content: str
    ) -> ValidationResult:
        """
        Validate a candidate change to one file.

        Args:
            file: File path, absolute or relative to the project root
            original_content: Content restored after the checks
            candidate_content: Content to check

        Returns:
            ValidationResult

        Raises:
            FileWriteError: If the original content could not be restored
        """
        if not self.has_checks():
            return ValidationResult(valid=True)

        start_time = time.time()
        path = Path(file)
        if not path.is_absolute():
            path = self.project_root / path

        result = ValidationResult(valid=True)
        try:
            write_source(path, candidate_content)
            result = self._run_checks(path)
        except FileWriteError as e:
            result = ValidationResult(valid=False, reason=f"Validation error: {e}")
        finally:
            write_source(path, original_content)

        result.duration_seconds = time.time() - start_time
        if not result.valid:
            logger.info("Validation failed for %s: %s", file, (result.reason or "")[:200])
        return result

    def _run_checks(self, path: Path) -> ValidationResult:
        checks_run: List[str] = []

        for kind, command in self.checks.ordered():
            checks_run.append(kind)
            outcome = run_command(command, self.project_root, self.config.timeout_seconds)
            if outcome.success:
                continue

            label = FAILURE_LABELS[kind]
            if outcome.timed_out:
                reason = (f"{label} timed out after {self.config.timeout_seconds}s: "
                          f"{outcome.output}")
            else:
                reason = f"{label} failed: {outcome.output}"
            return ValidationResult(valid=False, reason=reason, checks_run=checks_run)

        for validator in self._custom_validators:
            checks_run.append("custom")
            error_msg = validator(path)
            if error_msg:
                return ValidationResult(
                    valid=False,
                    reason=f"Custom validator failed: {error_msg}",
                    checks_run=checks_run
                )

        return ValidationResult(valid=True, checks_run=checks_run)
