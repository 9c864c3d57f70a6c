"""Action boundary: operations raise, callers get ``{success, error}`` dicts."""
from __future__ import annotations

import functools
import logging
from typing import Any, Callable

log = logging.getLogger(__name__)


class ActionError(Exception):
    """Domain failure whose message is shown to the user as-is."""


def ok(message: str | None = None, **data: Any) -> dict[str, Any]:
    result: dict[str, Any] = {"success": True}
    if message is not None:
        result["message"] = message
    result.update(data)
    return result


def fail(error: str, **data: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **data}


def action(fail_message: str) -> Callable:
    """Wrap an operation taking ``session`` first.

    ``ActionError`` becomes a failure carrying its own message; anything else
    is logged and reported as *fail_message*. The session is rolled back in
    both cases so a half-finished loop never gets committed.
    """
    def decorator(fn: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
        @functools.wraps(fn)
        def wrapper(session, *args, **kwargs) -> dict[str, Any]:
            try:
                return fn(session, *args, **kwargs)
            except ActionError as exc:
                session.rollback()
                return fail(str(exc))
            except Exception:
                log.exception("%s failed", fn.__name__)
                session.rollback()
                return fail(fail_message)
        return wrapper
    return decorator
