"""Per-review context shared with the log output.

The admission server runs each review inside `admission_context`, which
records the review uid in a context variable. `AdmissionUidFilter` copies it
onto every log record so that lines from the hooks and transforms can be
correlated with the review that produced them.
"""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator

__all__ = [
    "admission_context",
    "current_admission_uid",
    "AdmissionUidFilter",
]

_LOGGER = logging.getLogger(__name__)

NO_ADMISSION_UID = "-"

_admission_uid: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "admission_uid", default=None
)


def current_admission_uid() -> str | None:
    """Return the uid of the review being handled, if any."""
    return _admission_uid.get()


@contextmanager
def admission_context(path: str, uid: str) -> Generator[None, None, None]:
    """Run a block on behalf of the admission review `uid` received on `path`."""
    token = _admission_uid.set(uid)
    start = perf_counter()
    _LOGGER.debug("[Admission] > %s", path)
    try:
        yield
    finally:
        _LOGGER.debug("[Admission] < %s (%0.3fs)", path, perf_counter() - start)
        _admission_uid.reset(token)


class AdmissionUidFilter(logging.Filter):
    """Adds the `admission_uid` attribute to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.admission_uid = current_admission_uid() or NO_ADMISSION_UID
        return True
