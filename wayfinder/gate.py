"""
Global checks run before a parse resolves any command.

Checks, by priority (the first intercepting check ends the parse):
(a) no tokens on a root with a command name and no handler: help screen.
(b) --s-debug-print: dump the full configuration to the dump file.
(c) --s-enable-fuzzy: fuzzy mode for the whole tree, token stripped.
(d) --s-with-env <path>: configuration file values appended as tokens.
(e) --s-debug: runtime parsing simulation plus the final node's configuration.
(f) a help alias of the deepest addressed node: that node's help screen.
"""
import logging
from enum import StrEnum

from .environ import load_env_file, to_flag_values, merge_env_values
from .faults import EnvironmentFileError, FaultCode, trigger
from .renders import render_help, render_simulation, dump
from .results import OutcomeKind
from .utils import Unset
from .values import ValueResolver

logger = logging.getLogger(__name__)

HELP_FLAG = "help"
DEBUG_PRINT = "--s-debug-print"
DEBUG = "--s-debug"
ENABLE_FUZZY = "--s-enable-fuzzy"
WITH_ENV = "--s-with-env"


class GateState(StrEnum):
    IDLE = "idle"
    CHECKING = "checking"
    INTERCEPTED = "intercepted"
    PROCEED = "proceed"


class GlobalChecksGate:
    def __init__(self, resolver=Unset, /):
        self._resolver = ValueResolver() if resolver is Unset else resolver
        self.state = GateState.IDLE

    async def check(self, node, tokens, options, /):
        """
        Return a ParseResult when a check intercepts, else the rewritten tokens.
        """
        self.state = GateState.CHECKING
        tokens = list(tokens)
        if (outcome := await self._intercept(node, tokens, options)) is not None:
            self.state = GateState.INTERCEPTED
            logger.debug("global checks intercepted the parse: %s", outcome.message)
            return outcome
        self.state = GateState.PROCEED
        return tokens

    async def _intercept(self, node, tokens, options):
        if not tokens and node.parent is None and node.command_name and node.handler is None and not options.skip_help:
            render_help(node)
            return node._exit(0, "Help displayed", OutcomeKind.HELP)

        if DEBUG_PRINT in tokens:
            path = dump(node, node.dump_path)
            return node._exit(0, f"Debug information printed to {path}", OutcomeKind.DEBUG, str(path))

        if ENABLE_FUZZY in tokens:
            node._enable_fuzzy()
            tokens[:] = [token for token in tokens if token != ENABLE_FUZZY]

        if WITH_ENV in tokens:
            index = tokens.index(WITH_ENV)
            if index + 1 >= len(tokens) or tokens[index + 1].startswith("-"):
                return self._fail(node, "--s-with-env requires a file path argument")
            path = tokens[index + 1]
            del tokens[index:index + 2]
            try:
                raw = load_env_file(path)
            except EnvironmentFileError as exception:
                return self._fail(node, f"Error loading environment file: {exception}")
            _, chain, nodes = node._identify(tokens)
            values = await to_flag_values(raw, nodes, resolver=self._resolver)
            tokens[:] = merge_env_values(values, nodes, chain, tokens)
            logger.debug("loaded %d value(s) from %s", len(values), path)

        if DEBUG in tokens:
            tokens[:] = [token for token in tokens if token != DEBUG]
            final, _, _ = node._identify(tokens)
            render_simulation(node, await node._simulate(tokens))
            dump(final)
            return node._exit(0, "Debug information displayed", OutcomeKind.DEBUG)

        final, chain, _ = node._identify(tokens)
        if not options.skip_help and final.registry.get(HELP_FLAG) is not None:
            aliases = final.registry.options(HELP_FLAG)
            if any(token in aliases for token in tokens):
                await node._preload(tokens)
                render_help(final)
                return node._exit(0, "Help displayed", OutcomeKind.HELP)

        return None

    @staticmethod
    def _fail(node, message):
        trigger(
            EnvironmentFileError(message, code=FaultCode.ENVIRONMENT_FILE),
            handle=True,
            exit=False,
            prog=node.prog,
            fancy=node.fancy,
            colorful=node.colorful,
        )
        return node._exit(1, message, OutcomeKind.ERROR)


__all__ = (
    "GlobalChecksGate",
    "GateState",
    "HELP_FLAG",
    "DEBUG_PRINT",
    "DEBUG",
    "ENABLE_FUZZY",
    "WITH_ENV",
)
