"""
Handler execution for the terminal node of a parse.

The handler receives a HandlerContext and may be a plain function or a
coroutine function. Awaitable results are awaited unless the parse asked not
to wait, in which case the running task is handed back as Pending. A mapping
result is merged into the final arguments; the raw result becomes
Arguments.response. Anything the handler raises becomes a HandlerError.
"""
import asyncio
import inspect
import json
import logging
from collections import namedtuple
from collections.abc import Mapping

from .faults import HandlerError

logger = logging.getLogger(__name__)

HandlerContext = namedtuple("HandlerContext", ("args", "parent_args", "chain", "node", "parent", "options"))
Resolved = namedtuple("Resolved", ("value",))
Pending = namedtuple("Pending", ("task",))


class HandlerExecutor:
    async def execute(self, context, args, /, *, skip=False, wait=True, fuzzy=False, tokens=()):
        """
        Run the handler of context.node; returns None, Resolved or Pending.
        """
        handler = context.node.handler
        if skip or handler is None:
            return None

        if fuzzy:
            logger.info("[--s-enable-fuzzy] handler() skipped for command chain: %s", " ".join(context.chain) or "(root)")
            logger.info("  Input args: [%s]", " ".join(tokens))
            logger.info("  Parsed args: %s", json.dumps(context.args, default=str))
            return None

        for flag in context.node.registry:
            if flag.name in args:
                context.args[flag.name] = args[flag.name]
            elif flag.multiple:
                context.args.setdefault(flag.name, [])

        logger.debug("invoking handler %r for %s", getattr(handler, "__name__", handler), " ".join(context.chain) or "(root)")
        try:
            result = handler(context)
        except Exception as exception:
            raise HandlerError(f"Handler error: {exception}", chain=context.chain) from exception

        if not inspect.isawaitable(result):
            self.merge(args, result)
            return Resolved(result)

        if not wait:
            return Pending(asyncio.ensure_future(self._complete(result, args, context.chain)))
        return Resolved(await self._complete(result, args, context.chain))

    async def _complete(self, awaitable, args, chain):
        try:
            result = await awaitable
        except Exception as exception:
            raise HandlerError(f"Handler error: {exception}", chain=chain) from exception
        self.merge(args, result)
        return result

    @staticmethod
    def merge(args, result, /):
        args.response = result
        if isinstance(result, Mapping):
            args.update(result)


__all__ = (
    "HandlerExecutor",
    "HandlerContext",
    "Resolved",
    "Pending",
)
