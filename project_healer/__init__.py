"""
Project Healer
==============

An automated remediation orchestrator. It takes detected source-file
issues, rewrites files safely, validates each change against the
project's own lint/type-check/test commands, recovers from failed or
partial edits, and repeats over bounded passes until no further progress
is made.

Components:
-----------
- Scheduler: Orders files by issue count and issues bottom-up within a file
- Executor: Applies pattern fixes or asks a fix provider, one issue at a time
- Validator: Runs project checks against each candidate change
- Rollback: Session-scoped backups with commit and rollback
- Logger: Maintains an audit trail of all healing actions
- Orchestrator: Coordinates the multi-pass healing loop

Usage:
------
    from project_healer import PassController, StaticScanner

    controller = PassController("path/to/project", StaticScanner(issues))
    report = controller.apply_fixes()

    for fixed in report.fixed:
        print(fixed.issue.describe(), "->", fixed.resolution)

Version: 1.0.0
"""

from .config import HealerConfig
from .errors import HealerError, ProjectNotFound
from .issues import Issue, PatternFix, DelegatedFix, Severity, IssueSource
from .logger import HealingLogger
from .backup_store import BackupStore
from .rollback import RollbackManager
from .providers import StaticScanner, NullFixProvider, HttpFixProvider
from .executor import FixExecutor
from .scheduler import IssueScheduler
from .validator import ValidatorGate, ValidationResult
from .orchestrator import PassController, HealingReport, create_healer

__version__ = "1.0.0"
__all__ = [
    "HealerConfig",
    "HealerError",
    "ProjectNotFound",
    "Issue",
    "PatternFix",
    "DelegatedFix",
    "Severity",
    "IssueSource",
    "HealingLogger",
    "BackupStore",
    "RollbackManager",
    "StaticScanner",
    "NullFixProvider",
    "HttpFixProvider",
    "FixExecutor",
    "IssueScheduler",
    "ValidatorGate",
    "ValidationResult",
    "PassController",
    "HealingReport",
    "create_healer",
]
