"""
Project metadata: which check commands a project defines.

Detection sources, in order of precedence:

1. Explicit commands from ValidationConfig
2. package.json scripts (lint, typecheck/type-check, test)
3. package.json devDependencies (eslint, typescript)
4. pyproject.toml tool tables (ruff/flake8, mypy, pytest)

A malformed metadata file is logged and skipped; it never aborts healing.
"""

import json
import logging
import shlex
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import ValidationConfig

logger = logging.getLogger(__name__)


@dataclass
class CheckSet:
    """Check commands available for a project; None means not available."""
    lint: Optional[str] = None
    type_check: Optional[str] = None
    test: Optional[str] = None

    def ordered(self) -> List[Tuple[str, str]]:
        """Return (kind, command) pairs in run order: lint, type-check, test."""
        pairs = [("lint", self.lint), ("type_check", self.type_check), ("test", self.test)]
        return [(kind, command) for kind, command in pairs if command]

    def is_empty(self) -> bool:
        return not self.ordered()


class ProjectMetadata:
    """
    Detects validation commands from a project's metadata files.

    Usage:
        checks = ProjectMetadata(project_root).detect_checks()
        for kind, command in checks.ordered():
            ...
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        overrides: Optional[ValidationConfig] = None
    ):
        self.project_root = Path(project_root)
        self.overrides = overrides

    def detect_checks(self) -> CheckSet:
        """Detect the lint, type-check and test commands for the project."""
        checks = CheckSet()
        self._detect_from_package_json(checks)
        self._detect_from_pyproject(checks)

        if self.overrides is not None:
            checks.lint = self.overrides.lint_command or checks.lint
            checks.type_check = self.overrides.type_check_command or checks.type_check
            checks.test = self.overrides.test_command or checks.test

        logger.debug("Detected checks for %s: %s", self.project_root, checks)
        return checks

    def _load_json(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error parsing %s: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    def _detect_from_package_json(self, checks: CheckSet) -> None:
        path = self.project_root / "package.json"
        if not path.exists():
            return
        package = self._load_json(path)
        if package is None:
            return

        scripts = package.get("scripts") or {}
        if scripts.get("test"):
            checks.test = "npm test"
        if scripts.get("lint"):
            checks.lint = "npm run lint"
        if scripts.get("typecheck"):
            checks.type_check = "npm run typecheck"
        elif scripts.get("type-check"):
            checks.type_check = "npm run type-check"

        dev_dependencies = package.get("devDependencies") or {}
        if not checks.lint and "eslint" in dev_dependencies:
            checks.lint = "npx eslint ."
        if not checks.type_check and "typescript" in dev_dependencies:
            checks.type_check = "npx tsc --noEmit"

    def _detect_from_pyproject(self, checks: CheckSet) -> None:
        path = self.project_root / "pyproject.toml"
        if not path.exists():
            return
        try:
            with open(path, 'rb') as f:
                pyproject = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Error parsing %s: %s", path, e)
            return

        tools = pyproject.get("tool") or {}
        if not checks.lint:
            if "ruff" in tools:
                checks.lint = "ruff check ."
            elif "flake8" in tools:
                checks.lint = "flake8 ."
        if not checks.type_check and "mypy" in tools:
            checks.type_check = "mypy ."
        if not checks.test and "pytest" in tools:
            checks.test = f"{shlex.quote(sys.executable)} -m pytest -q"
