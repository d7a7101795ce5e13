"""Shared test fixtures and utilities.

Provides pytest fixtures and helper classes for testing the healing
components against throwaway project trees.
"""
# pylint: disable=redefined-outer-name
import tempfile
from pathlib import Path
from typing import Callable, Dict, List

import pytest

from project_healer.config import HealerConfig
from project_healer.issues import Issue, PatternFix
from project_healer.logger import HealingLogger


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def project_dir(temp_dir):
    """Empty project root inside the temporary directory"""
    root = Path(temp_dir) / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_file(project_dir):
    """Write a file relative to the project root and return its path"""
    def _write(relative: str, content: str) -> Path:
        path = project_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        return path
    return _write


@pytest.fixture
def quiet_config(temp_dir):
    """Default config that keeps logs out of the console and the project"""
    config = HealerConfig()
    config.logging.log_to_console = False
    config.logging.log_directory = str(Path(temp_dir) / "logs")
    return config


@pytest.fixture
def healing_logger(quiet_config):
    """HealingLogger writing into the temporary directory"""
    return HealingLogger(
        log_directory=quiet_config.logging.log_directory,
        log_to_console=False
    )


@pytest.fixture
def numbered_text():
    """Ten-line text whose lines are easy to target with patterns"""
    return "".join(f"line {i}\n" for i in range(1, 11))


def pattern_issue(file: str, line: int, find: str, replace: str,
                  message: str = None) -> Issue:
    """Build a pattern-fixable issue"""
    return Issue(
        file=file,
        line=line,
        message=message or f"replace {find}",
        fix=PatternFix(find_regex=find, replace_template=replace),
        pattern_id=f"pattern-{find}"
    )


class RecordingFixProvider:
    """Fix provider that applies a per-message rewrite and records its calls"""

    def __init__(self, rewrites: Dict[str, Callable[[str], str]] = None):
        self.rewrites = rewrites or {}
        self.calls: List[Issue] = []

    def generate_fix(self, content: str, file_type: str, issue: Issue) -> str:
        self.calls.append(issue)
        rewrite = self.rewrites.get(issue.message)
        return rewrite(content) if rewrite else content


class FailingFixProvider:
    """Fix provider that always raises"""

    def __init__(self, error: Exception):
        self.error = error

    def generate_fix(self, content: str, file_type: str, issue: Issue) -> str:
        raise self.error
