from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType

LOG_CONTEXT_FIELDS = ("run_id", "pass_id", "order_id", "symbol")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("gridbot_log_context", default=_EMPTY)


def get_logging_context() -> dict[str, str]:
    """Currently bound correlation fields; unset fields are absent."""
    return dict(_CONTEXT.get())


@contextmanager
def with_logging_context(**context: object) -> Iterator[None]:
    """Bind correlation fields for the duration of the block.

    Unknown keys and ``None`` values are ignored so callers can pass optional ids.
    """
    bound = dict(_CONTEXT.get())
    bound.update(
        {
            key: str(value)
            for key, value in context.items()
            if key in LOG_CONTEXT_FIELDS and value is not None
        }
    )
    token = _CONTEXT.set(MappingProxyType(bound))
    try:
        yield
    finally:
        _CONTEXT.reset(token)


@contextmanager
def with_pass_context(pass_id: str, run_id: str | None = None) -> Iterator[None]:
    with with_logging_context(pass_id=pass_id, run_id=run_id):
        yield
