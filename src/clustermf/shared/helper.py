from collections.abc import Callable
from time import time
from typing import Any, TypeVar

from attrs import define, field

_Function = TypeVar("_Function", bound=Callable)


# Note that we have once Callable and once Function.
# This is **intentional**.
# The inner function `update_doc` takes a function
# and returns a function **with** the exact same signature.
def add_docstring(doc: str | None) -> Callable[[_Function], _Function]:
    """Add a docstring to a function as decorator.

    Is useful for programmatically generating docstrings.

    Parameters
    ----------
    doc: str
        A docstring.
    """

    def update_doc(f: _Function) -> _Function:
        f.__doc__ = doc
        return f

    return update_doc


def ensure(condition: bool, message: str = "") -> None:
    """This function can be used instead of :python:`assert`,
    if the test should be always executed.
    """
    if not condition:
        message = message if message else "Invariant condition was violated."
        raise ValueError(message)


def unused(*args: Any) -> None:
    pass


@define(frozen=True)
class Timer:
    """Simple class to time code execution"""

    message: str = "Elapsed time"
    start: float = field(init=False, factory=time)

    def __attrs_post_init__(self) -> None:
        from clustermf.shared.config import settings  # noqa: PLC0415

        if settings.PRINT_LEVEL >= 10:
            print(f"Timer with message '{self.message}' started.", flush=True)

    def elapsed(self) -> float:
        return time() - self.start

    def str_elapsed(self, message: str | None = None) -> str:
        return f"{self.message if message is None else message}: {self.elapsed():.5f}"
