"""Lock helpers for state shared between scheduler worker threads."""

from __future__ import annotations

from functools import wraps
from typing import Callable


def synchronized(func: Callable | None = None, *, lock_attr: str = "_lock") -> Callable:
    """Run the decorated method while holding ``self.<lock_attr>``.

    Usable bare (``@synchronized``) or with a different attribute name
    (``@synchronized(lock_attr="_history_lock")``). Instances without the
    attribute run unlocked.
    """

    def decorate(method: Callable) -> Callable:
        @wraps(method)
        def locked(self, *args, **kwargs):
            guard = getattr(self, lock_attr, None)
            if guard is None:
                return method(self, *args, **kwargs)
            with guard:
                return method(self, *args, **kwargs)

        return locked

    if func is None:
        return decorate
    return decorate(func)
