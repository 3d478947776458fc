"""
Token matching for one command level.

Two passes over the level's tokens, then the index of the first token left
unconsumed (the caller reports it as an unknown command):

1. ligature pass: "--alias=value" tokens for flags that allow the form.
2. split pass: bare aliases, taking the following token as the value unless it
   looks like an option. Switches record True; value-less bool flags too.

A flag stops matching after its first hit unless it is multiple. Only aliases
the registry still maps to a flag are matched for that flag.

The dynamic pre-pass (discover) runs the same two passes over the flags that
carry a register callback, into scratch output, and lets each callback add
flags to the node before the authoritative passes run.
"""
import functools
import logging
import re
from collections import namedtuple
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from .flags import Flag
from .utils import Unset, coalesce, settle
from .values import ValueResolver

logger = logging.getLogger(__name__)

DynamicContext = namedtuple("DynamicContext", ("value", "args", "node", "tokens", "help", "register"))
DynamicContext.__doc__ = """
Argument of a dynamic registration callback.

- value: the value the trigger flag received.
- args: scratch values of every dynamic flag of the level (read-only).
- node: the command node being parsed.
- tokens: the level's tokens.
- help: True while preloading flags for a help screen.
- register: callable adding flag declarations to the node immediately.
"""


@functools.cache
def _ligature(options, /):
    alternatives = "|".join(map(re.escape, sorted(options, key=len, reverse=True)))
    return re.compile(rf"(?:{alternatives})=(?P<value>.+)", re.DOTALL)


class Matcher:
    def __init__(self, resolver=Unset, /):
        self._resolver = ValueResolver() if resolver is Unset else resolver

    async def match(self, registry, tokens, /, *, names=Unset, output=Unset, chain=()):
        """
        Match tokens against the registry's flags (or the named subset).

        Returns (output, first_unconsumed) where output maps flag names to
        resolved values; multiple flags start as [] and others stay absent.
        """
        tokens = list(tokens)
        flags = [registry.get(name) for name in names] if names else list(registry)
        output = coalesce(output, {})
        for flag in flags:
            if flag.multiple:
                output.setdefault(flag.name, [])

        consumed = set()

        for flag in flags:
            if not flag.ligature or flag.switch or not (options := registry.options(flag.name)):
                continue
            pattern = _ligature(options)
            for index, token in enumerate(tokens):
                if index in consumed or not (match := pattern.fullmatch(token)):
                    continue
                await self._resolver.resolve(flag, match["value"], output, chain=chain)
                consumed.add(index)
                if not flag.multiple:
                    break

        for flag in flags:
            options = registry.options(flag.name)
            for index, token in enumerate(tokens):
                if index in consumed or token not in options:
                    continue
                consumed.add(index)
                following = index + 1
                if flag.switch:
                    await self._resolver.resolve(flag, True, output, chain=chain)
                elif following < len(tokens) and following not in consumed and not tokens[following].startswith("-"):
                    await self._resolver.resolve(flag, tokens[following], output, chain=chain)
                    consumed.add(following)
                elif flag.type is bool:
                    await self._resolver.resolve(flag, True, output, chain=chain)
                if not flag.multiple:
                    break

        first = next((index for index in range(len(tokens)) if index not in consumed), len(tokens))
        return output, first

    async def discover(self, node, tokens, /, *, help=False, chain=()):
        """
        Run the dynamic registration callbacks triggered by tokens.

        Returns the flags registered on node during this call.
        """
        registry = node.registry
        if not (candidates := [flag.name for flag in registry if flag.register]):
            return ()

        scratch, _ = await self.match(registry, tokens, names=candidates, chain=chain)
        registered = []

        def register(flags):
            registered.extend(node._register_dynamic(flags))

        for name in candidates:
            trigger = registry.get(name)
            if trigger is None or trigger.absent(scratch):
                continue
            logger.debug("dynamic registration triggered by flag %r on %r", name, node.name)
            context = DynamicContext(scratch[name], MappingProxyType(scratch), node, tuple(tokens), help, register)
            if returned := await settle(trigger.register(context)):
                if isinstance(returned, Flag | Mapping) or not isinstance(returned, Iterable):
                    returned = (returned,)
                register(returned)

        return tuple(registered)


__all__ = (
    "Matcher",
    "DynamicContext",
)
