"""Trace ids carried through log records via a context variable."""

import contextvars
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

T = TypeVar("T")

_current_trace: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("ragstore_trace_id", default=None)


def generate_trace_id() -> str:
    return uuid.uuid4().hex


def get_current_trace_id() -> Optional[str]:
    return _current_trace.get()


@contextmanager
def trace_context(trace_id: Optional[str] = None, reuse: bool = False) -> Iterator[str]:
    """Bind a trace id for the block.

    With ``reuse=True`` an id already bound by the caller is kept instead of
    starting a new trace.
    """
    if reuse and trace_id is None:
        trace_id = _current_trace.get()
    token = _current_trace.set(trace_id or generate_trace_id())
    try:
        yield _current_trace.get()
    finally:
        _current_trace.reset(token)


def bind_to_current_context(func: Callable[..., T]) -> Callable[..., T]:
    """Wrap ``func`` so it runs in a copy of the caller's context (trace id included).

    Worker threads do not inherit context variables; wrap callables before
    handing them to an executor.
    """
    ctx = contextvars.copy_context()

    def runner(*args, **kwargs) -> T:
        return ctx.run(func, *args, **kwargs)

    return runner
