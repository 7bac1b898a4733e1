"""
errors.py - Error Taxonomy
==========================
Every way a single lookup can fail, plus the two run-level errors.

Per-subject errors (never raised out of a retrieval run):
----------------------------------------------------------
- AuthenticationError  : The API rejected our key. Fatal to the run, stops
                         further submissions. In-flight requests still drain.
- RemoteResponseError  : The API answered with a non-2xx status (redirects
                         included, they are never followed).
- NoResponseError      : Nothing came back (connection refused, DNS, timeout).
- LocalError           : Anything else that went wrong on our side.

Run-level errors (raised to the caller):
----------------------------------------
- ConfigError          : Settings failed validation.
- RunInProgressError   : A second retrieval run was started on a session that
                         is still running one.
"""

from typing import Any, Dict, List


# Message the results API puts in the body of a rejected request
AUTH_FAILED_MESSAGE = "Authentication failed."


class RetrievalError(Exception):
    """Base class for a failed lookup of one subject."""

    def log_lines(self) -> List[str]:
        """Lines to append to the session log for this failure."""
        return [str(self)]


class AuthenticationError(RetrievalError):
    def __init__(self, message: str = AUTH_FAILED_MESSAGE):
        super().__init__(message)

    def log_lines(self) -> List[str]:
        return ["ERROR: Authentication failure encountered, stopping early"]


class RemoteResponseError(RetrievalError):
    """
    The API responded, but not with a 2xx.

    Keeps the status, headers and body so the operator can see exactly what
    the server said.
    """

    def __init__(self, status: int, headers: Dict[str, str], body: Any):
        super().__init__(f"Unexpected response code {status}")
        self.status = status
        self.headers = headers
        self.body = body

    def log_lines(self) -> List[str]:
        return [
            "ERROR: Some unexpected response code",
            str(self.headers),
            str(self.body),
        ]


class NoResponseError(RetrievalError):
    def log_lines(self) -> List[str]:
        return [f"ERROR: No response {self}"]


class LocalError(RetrievalError):
    def log_lines(self) -> List[str]:
        return [f"ERROR: Unexpected error from client {self}"]


class ConfigError(RuntimeError):
    """Raised when settings fail validation (bad base URL or API key)."""


class RunInProgressError(RuntimeError):
    """Raised when a retrieval run is started while another one is active."""
