"""
External collaborators of the healing loop.

The scanner that detects issues and the service that writes fix content
live outside this package. This module defines the interfaces the pass
controller and fix executor consume, plus small adapters:

- NullFixProvider: never changes content (pattern fixes only)
- HttpFixProvider: delegates to a remote fix service over HTTP
- StaticScanner: wraps a fixed issue list or a callable
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

import requests

from .errors import FixApplicationError
from .issues import Issue

logger = logging.getLogger(__name__)


class Scanner(Protocol):
    """Produces the current issue set for a project."""

    def scan(self) -> List[Issue]:
        ...


class FixProvider(Protocol):
    """
    Produces replacement file content for one issue.

    Must be safe to call on already-fixed content: return it unchanged or
    an equivalent fix.
    """

    def generate_fix(self, content: str, file_type: str, issue: Issue) -> str:
        ...


class NullFixProvider:
    """Fix provider that never changes anything."""

    def generate_fix(self, content: str, file_type: str, issue: Issue) -> str:
        return content


class StaticScanner:
    """
    Scanner backed by a fixed list of issues or a zero-argument callable.

    Dictionaries in the scanner's native shape are converted with
    Issue.from_dict.
    """

    def __init__(self, source: Union[Iterable[Union[Issue, Dict[str, Any]]],
                                      Callable[[], Iterable[Union[Issue, Dict[str, Any]]]]]):
        self._source = source

    def scan(self) -> List[Issue]:
        raw = self._source() if callable(self._source) else self._source
        return [item if isinstance(item, Issue) else Issue.from_dict(item) for item in raw]


class HttpFixProvider:
    """
    Fix provider backed by a remote fix service.

    Sends ``{"content", "fileType", "issue"}`` as JSON and expects
    ``{"content": "<new file content>"}`` back. Any transport or payload
    problem raises FixApplicationError, which the executor contains to
    the single issue being fixed.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 60,
        session: Optional[requests.Session] = None
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    def generate_fix(self, content: str, file_type: str, issue: Issue) -> str:
        payload = {
            "content": content,
            "fileType": file_type,
            "issue": issue.to_dict(),
        }
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as err:
            logger.warning("Fix service request failed for %s: %s", issue.describe(), err)
            raise FixApplicationError(f"Fix service request failed: {err}") from err
        except ValueError as err:
            raise FixApplicationError(f"Fix service returned invalid JSON: {err}") from err

        new_content = body.get("content") if isinstance(body, dict) else None
        if not isinstance(new_content, str):
            raise FixApplicationError("Fix service response has no 'content' string")
        return new_content
