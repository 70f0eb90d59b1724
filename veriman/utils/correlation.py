"""run id of the current driver run, read by the run logger"""
import uuid
from contextvars import ContextVar, Token
from typing import Optional


_run_id: ContextVar[Optional[str]] = ContextVar('run_id', default=None)


def generate_run_id() -> str:
    """8-character hex id, e.g. "a3f9b2c4" """
    return uuid.uuid4().hex[:8]


def set_run_id(run_id: Optional[str]) -> Token:
    return _run_id.set(run_id)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def clear_run_id() -> None:
    _run_id.set(None)


class runcontext:
    """scopes a run id: `with runcontext() as run_id: ...`"""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or generate_run_id()
        self._token: Optional[Token] = None

    def __enter__(self) -> str:
        self._token = set_run_id(self.run_id)
        return self.run_id

    def __exit__(self, *args):
        _run_id.reset(self._token)
        self._token = None
