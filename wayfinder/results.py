"""
Parse outcomes.

- Arguments: the resolved flag values (a dict keyed by flag name) of a
  successful parse, with the matched command chain, the handler response and
  the pending handler task when the handler was not awaited.
- ParseResult: terminal outcome of a parse that did not produce arguments
  (help or debug screens, handled errors).
"""
from collections import namedtuple
from enum import StrEnum

from .utils import Unset


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    HELP = "help"
    DEBUG = "debug"


ParseResult = namedtuple("ParseResult", ("success", "code", "message", "kind", "should_exit", "data"), defaults=(None,))

ParseOptions = namedtuple(
    "ParseOptions",
    ("skip_help", "skip_handlers", "wait", "protocol", "preload"),
    defaults=(False, False, True, False, False),
)


class Arguments(dict):
    """
    Resolved flag values keyed by flag name.

    Attributes
    - chain: names of the matched nodes below the root, in order.
    - tokens: the tokens the parse started from.
    - response: the handler's return value (Unset when no handler ran).
    - pending: Pending(task) when the handler was started but not awaited.
    """

    def __init__(self, *args, chain=(), tokens=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.chain = tuple(chain)
        self.tokens = tuple(tokens)
        self.response = Unset
        self.pending = None

    async def settle(self):
        """
        Await a pending handler; its mapping result is merged into self.
        """
        if self.pending is not None:
            pending, self.pending = self.pending, None
            await pending.task
        return self.response

    def __repr__(self):
        return f"arguments({dict.__repr__(self)}, chain={self.chain!r})"


__all__ = (
    "Arguments",
    "ParseResult",
    "ParseOptions",
    "OutcomeKind",
)
