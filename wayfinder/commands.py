"""
Wayfinder command layer: build command trees, resolve token streams, run handlers.

What this module provides
- Command: a node of the command tree. It owns a FlagRegistry, an optional
  handler, ordered children and policy settings (error handling, exit,
  strictness, rendering, environment store).
- command(...): create a Command or a decorator that produces one.
- invoke(obj, prompt): run a command (or a plain callable) synchronously.

Parse pipeline (Command.parse)
1. Dynamic flags of the previous parse are removed (whole tree).
2. Global checks (wayfinder.gate) may end the parse with a help/debug/error
   outcome, or rewrite the tokens (fuzzy mode, configuration files).
3. Chain resolution: the first token equal to a child name splits the stream;
   tokens before it belong to the current level, which is parsed (dynamic
   pre-pass, matching, environment fallback, defaults, environment sync) and
   must be fully consumed. Resolution recurses into the child.
4. Mandatory flags are validated across the resolved path (skipped in fuzzy mode).
5. The terminal node's handler runs (skipped in fuzzy mode).

Quick start
    from wayfinder import Command, Flag

    root = Command("tool", [Flag("name", "--name", mandatory=True)], command_name="tool")

    @root.command("greet", inherit=True)
    def greet(context):
        print(f"hello {context.args['name']}")

    if __name__ == "__main__":
        invoke(root)

See also
- wayfinder.flags for flag declarations and registry policy.
- wayfinder.faults for fault codes and rendering behavior.
"""
import asyncio
import functools
import inspect
import logging
import operator
import os
import os.path
import re
import shlex
import sys
from collections.abc import Iterable, Mapping, MutableMapping

from rich.text import Text

from . import renders
from .environ import EnvironmentStore, DefaultsAndEnvResolver
from .faults import *
from .flags import Flag, FlagInheritance, FlagRegistry, flag, materialize
from .gate import GlobalChecksGate, HELP_FLAG
from .handlers import HandlerExecutor, HandlerContext, Pending
from .matching import Matcher
from .results import Arguments, ParseResult, ParseOptions, OutcomeKind
from .utils import *
from .validation import MandatoryValidator
from .values import ValueResolver

logger = logging.getLogger(__name__)

_resolver = ValueResolver()
_matcher = Matcher(_resolver)
_validator = MandatoryValidator()
_executor = HandlerExecutor()

# policies a child takes from its parent at attach time unless given explicitly
_INHERITED_POLICIES = ("handle_errors", "strict", "fancy", "colorful", "sync")

_DEFAULT_POLICIES = {
    "handle_errors": True,
    "auto_exit": True,
    "strict": False,
    "fancy": False,
    "colorful": True,
    "sync": True,
}


@functools.cache
def _process_environ():
    return EnvironmentStore()


class CommandType(type):
    """
    Metaclass exposing declared fields as read-only properties.

    Conventions
    - __typename__ is derived from the class name (camel-case split with hyphens)
      for consistent labels in messages.
    - __displayable__ (if set) narrows which properties are shown by __rich_repr__;
      otherwise __introspectable__ is used.
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
        )

        @rename("__repr__")
        def __repr__(self):
            return f"{type(self).__typename__}({
                ", ".join(map(functools.partial(operator.mod, "%s=%r"), self.__rich_repr__()))
            })"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


def _process_identity(cls, metadata):
    """
    Normalize name, description, application command name and handler.

    Errors
    - TypeError: when a value has the wrong type.
    - ValueError: when a string is empty after trimming, or the name starts
      with "-" or contains whitespace (it would never match a token).
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} 'name' must be a string")
    elif not (name := name.strip()):
        raise ValueError(f"{cls.__typename__} 'name' cannot be empty")
    elif name.startswith("-") or re.search(r"\s", name):
        raise ValueError(f"{cls.__typename__} 'name' cannot start with '-' or contain whitespace")
    metadata["name"] = name

    for field in ("descr", "command_name"):
        if not isinstance(object := metadata[field], str | Text | Unset):
            raise TypeError(f"{cls.__typename__} {field!r} must be a string")
        elif isinstance(object, str) and not (object := object.strip()):
            raise ValueError(f"{cls.__typename__} {field!r} cannot be empty")
        metadata[field] = coalesce(object)

    if (handler := metadata["handler"]) is not None and not callable(handler):
        raise TypeError(f"{cls.__typename__} 'handler' must be callable")


def _process_policies(cls, metadata):
    """
    Validate policy switches and record which ones were given explicitly.

    Unset switches fall back to the defaults now and to the parent's values
    when the node is attached.
    """
    explicit = set()
    for policy, default in _DEFAULT_POLICIES.items():
        if not isinstance(value := metadata[policy], bool | Unset):
            raise TypeError(f"{cls.__typename__} {policy!r} must be a boolean")
        if value is not Unset:
            explicit.add(policy)
        metadata[policy] = coalesce(value, default)
    metadata["explicit"] = frozenset(explicit)

    try:
        metadata["inherit"] = FlagInheritance(metadata["inherit"])
    except ValueError:
        raise ValueError(f"{cls.__typename__} 'inherit' must be one of {", ".join(map(repr, map(str, FlagInheritance)))}") from None

    if not isinstance(environ := metadata["environ"], MutableMapping | Unset):
        raise TypeError(f"{cls.__typename__} 'environ' must be a mutable mapping")
    if environ is not Unset and not isinstance(environ, EnvironmentStore):
        environ = EnvironmentStore(environ)
    metadata["environ"] = coalesce(environ)

    if not isinstance(dump := metadata["dump"], str | os.PathLike | Unset):
        raise TypeError(f"{cls.__typename__} 'dump' must be a path")
    metadata["dump"] = coalesce(dump)


def _tokenize(prompt, caller):
    if prompt is Unset:
        return sys.argv[1:]
    if isinstance(prompt, str):
        return shlex.split(prompt)
    if isinstance(prompt, Iterable):
        tokens = list(prompt)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError(f"{caller}() argument must be a string or an iterable of strings")
        return tokens
    raise TypeError(f"{caller}() argument must be a string or an iterable of strings")


def _help_flag():
    return Flag(HELP_FLAG, "-h", "--help", switch=True, descr="show this help message and exit")


class Command(metaclass=CommandType):
    """
    Node of a command tree.

    Responsibilities
    - Declaration: owns the node's flags (FlagRegistry) and handler.
    - Composition: children are attached with add_subcommand()/command(); the
      tree is acyclic and a node is attached at most once.
    - Inheritance: at attach time a child snapshots its parent's flags
      (DIRECT_PARENT_ONLY) or every ancestor's flags (ALL_PARENTS).
    - Policies: handle_errors, strict, fancy, colorful and sync are taken from
      the parent unless given explicitly; auto_exit always is; command_name
      when the child has none.
    - Parsing: parse() resolves a token stream against the tree (see module docs).
    """

    __introspectable__ = (
        "name",
        "descr",
        "command_name",
        "inherit",
        "auto_exit",
        "strict",
        "fancy",
        "colorful",
        "sync",
        "parent",
        "children",
    )

    __displayable__ = (
        "name",
        "descr",
        "command_name",
        "inherit",
        "flag_names",
        "chain",
    )

    def __new__(
            cls,
            name=Unset,
            /,
            flags=(),
            *,
            descr=Unset,
            handler=None,
            inherit=FlagInheritance.NONE,
            command_name=Unset,
            handle_errors=Unset,
            auto_exit=Unset,
            strict=Unset,
            fancy=Unset,
            colorful=Unset,
            sync=Unset,
            environ=Unset,
            dump=Unset,
    ):
        """
        Construct a command node.

        Parameters
        - name: node name, matched against tokens for child nodes. Defaults to the
          handler's __name__, or the script name.
        - flags: Iterable[Flag | Mapping] declared on this node. A "help" switch
          (-h/--help) is added unless a flag named "help" is declared.
        - descr: help description (defaults to the handler's docstring).
        - handler: callable(HandlerContext) run when this node is the terminal one.
        - inherit: FlagInheritance (True/False accepted as legacy forms).
        - command_name: application command name shown in usage and hints.
        - handle_errors: print parse/handler faults instead of raising them.
        - auto_exit: terminate the process after help/debug/error outcomes.
        - strict: duplicate flag names and alias collisions raise instead of warning.
        - fancy / colorful: rendering switches.
        - sync: write env-bound values back to the environment store.
        - environ: MutableMapping backing the environment store (os.environ by default).
        - dump: file written by --s-debug-print.
        """
        metadata = {
            "name": coalesce(name, getattr(handler, "__name__", os.path.basename(sys.argv[0]))),
            "descr": coalesce(descr, inspect.getdoc(handler) or Unset) if handler is not None else descr,
            "command_name": command_name,
            "handler": handler,
            "inherit": inherit,
            "handle_errors": handle_errors,
            "auto_exit": auto_exit,
            "strict": strict,
            "fancy": fancy,
            "colorful": colorful,
            "sync": sync,
            "environ": environ,
            "dump": dump,
        }
        _process_identity(cls, metadata)
        _process_policies(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object)

        self._parent = None
        self._children = {}
        self._dynamic = set()
        self._fuzzy = False
        self._last = None

        flags = [materialize(flag) for flag in flags]
        self._registry = FlagRegistry(strict=self._strict)
        if all(flag.name != HELP_FLAG for flag in flags):
            self._registry.add(_help_flag())
        self._registry.extend(flags)
        return self

    # ── Tree accessors ──────────────────────────────────────────────────────

    @property
    def root(self):
        """
        Return the topmost command of the tree this node belongs to.
        """
        child, parent = self, self._parent
        while parent:
            child, parent = parent, parent._parent
        return child

    @property
    def path(self):
        """
        Return the nodes from the root to this one, as a tuple.
        """
        path = [command := self]
        while command._parent:
            path.append(command := command._parent)
        return tuple(reversed(path))

    @property
    def chain(self):
        """
        Names of the nodes below the root down to this one.
        """
        return tuple(node.name for node in self.path[1:])

    def get_child(self, name, /):
        return self._children.get(name)

    @property
    def last(self):
        """
        Outcome of the most recent parse (Arguments or ParseResult), or None.
        """
        return self._last

    # ── Policies ───────────────────────────────────────────────────────────

    @property
    def handle_errors(self):
        return self._handle_errors and not self._fuzzy

    @property
    def fuzzy(self):
        return self._fuzzy

    @property
    def prog(self):
        """
        Program name used in usage lines and hints.
        """
        return self._command_name or self.root.name

    @property
    def environ(self):
        """
        Environment store of the nearest node (self included) that has one.
        """
        for node in reversed(self.path):
            if node._environ is not None:
                return node._environ
        return _process_environ()

    @property
    def dump_path(self):
        for node in reversed(self.path):
            if node._dump is not None:
                return node._dump
        return renders.DEFAULT_DUMP

    # ── Flags ──────────────────────────────────────────────────────────────

    @property
    def registry(self):
        return self._registry

    @property
    def flags(self):
        return self._registry.flags

    @property
    def flag_names(self):
        return self._registry.names

    @property
    def dynamic(self):
        """
        Names of the flags registered dynamically during the current parse.
        """
        return frozenset(self._dynamic)

    def add_flag(self, flag, /):
        self._registry.add(flag)
        return self

    def add_flags(self, flags, /):
        self._registry.extend(flags)
        return self

    def flag(self, name, /, *options, **kwargs):
        """
        Decorator declaring a flag on this node, parsed by the decorated callable.

            @root.flag("port", "-p", "--port", default=8080)
            def port(value):
                return int(value)
        """
        declare = flag(name, *options, **kwargs)

        @rename("flag")
        def wrapper(callback, /):
            return self._registry.add(declare(callback))

        return wrapper

    def remove_flag(self, name, /):
        self._dynamic.discard(name)
        return self._registry.remove(name)

    def has_flag(self, name, /):
        return name in self._registry

    def get_flag(self, name, /):
        return self._registry.get(name)

    # ── Handler ────────────────────────────────────────────────────────────

    @property
    def handler(self):
        return self._handler

    @handler.setter
    def handler(self, handler):
        if handler is not None and not callable(handler):
            raise TypeError(f"{type(self).__typename__} 'handler' must be callable")
        self._handler = handler

    def set_handler(self, handler, /):
        """
        Set the handler; returns it, enabling decorator-style usage: @cmd.set_handler
        """
        self.handler = handler
        if handler is not None and self._descr is None and (descr := inspect.getdoc(handler)):
            self._descr = descr
        return handler

    # ── Composition ────────────────────────────────────────────────────────

    def add_subcommand(self, child, /, name=Unset, *, handler=Unset):
        """
        Attach child under this node and return it.

        Raises
        - InvalidCommandError: child is not a command, is already attached, or
          is this node or one of its ancestors.
        - DuplicateCommandError: a child with the same name exists.
        """
        if not isinstance(child, Command):
            raise InvalidCommandError(
                f"sub-command {coalesce(name, "<unnamed>")!r} must be a command, not {type(child).__name__!r}",
                code=FaultCode.INVALID_COMMAND,
            )
        if not isinstance(name := coalesce(name, child.name), str) or not name or name.startswith("-") or re.search(r"\s", name):
            raise InvalidCommandError(f"invalid sub-command name {name!r}", code=FaultCode.INVALID_COMMAND)
        if name in self._children:
            raise DuplicateCommandError(f"Sub-command '{name}' already exists", code=FaultCode.DUPLICATE_COMMAND, name=name)
        if child._parent is not None:
            raise InvalidCommandError(f"command {child.name!r} is already attached to {child._parent.name!r}", code=FaultCode.INVALID_COMMAND)
        if any(node is child for node in self.path):
            raise InvalidCommandError(f"command {child.name!r} cannot be attached inside its own subtree", code=FaultCode.INVALID_COMMAND)

        child._name = name
        child._parent = self
        if handler is not Unset:
            child.set_handler(handler)
        self._children[name] = child
        child._adopt()
        logger.debug("attached %r under %r (inherit=%s)", name, self.name, child._inherit)
        return child

    def command(self, source=Unset, /, *args, **kwargs):
        """
        Create (or decorate) a sub-command and attach it under this node.

        Same invocation modes as the module-level command(...) factory.
        """
        if isinstance(result := command(source, *args, **kwargs), Command):
            return self.add_subcommand(result)

        @rename("command")
        def wrapper(source, /):
            return self.add_subcommand(result(source))

        return wrapper

    def _adopt(self, *, cascade=False):
        """
        Take policies and flag snapshots from the parent, then refresh the subtree.

        When a whole subtree is attached, descendants refresh their policies and
        ALL_PARENTS descendants pick up the newly reachable ancestor flags.
        """
        parent = self._parent
        for policy in _INHERITED_POLICIES:
            if policy not in self._explicit:
                setattr(self, "_" + policy, getattr(parent, "_" + policy))
        self._auto_exit = parent._auto_exit
        if self._command_name is None:
            self._command_name = parent._command_name
        self._registry.strict = self._strict

        match self._inherit:
            case FlagInheritance.DIRECT_PARENT_ONLY if not cascade:
                sources = (parent,)
            case FlagInheritance.ALL_PARENTS:
                sources = tuple(reversed(self.path[:-1]))
            case _:
                sources = ()

        for source in sources:
            for flag in source.registry:
                if flag.name != HELP_FLAG and flag.name not in source._dynamic:
                    self._registry.inherit(flag)

        for child in self._children.values():
            child._adopt(cascade=True)

    # ── Parsing ────────────────────────────────────────────────────────────

    def _walk(self, tokens):
        """
        Yield (node, chain, level_tokens, remaining_tokens) for each level.

        The first token equal to a child name of the current node ends the level.
        """
        node, chain, rest = self, (), list(tokens)
        while True:
            index = next((index for index, token in enumerate(rest) if token in node._children), None)
            if index is None:
                yield node, chain, rest, []
                return
            yield node, chain, rest[:index], rest[index:]
            chain += (rest[index],)
            node, rest = node._children[rest[index]], rest[index + 1:]

    def _identify(self, tokens):
        """
        Return (final_node, chain, nodes) addressed by tokens, without parsing.
        """
        nodes = []
        for node, chain, _, _ in self._walk(tokens):
            nodes.append(node)
        return nodes[-1], chain, tuple(nodes)

    def _reset(self):
        for name in self._dynamic:
            self._registry.remove(name)
        self._dynamic.clear()
        self._fuzzy = False
        for child in self._children.values():
            child._reset()

    def _enable_fuzzy(self):
        self._fuzzy = True
        for child in self._children.values():
            child._enable_fuzzy()

    def _register_dynamic(self, flags):
        if isinstance(flags, Flag | Mapping):
            flags = (flags,)
        registered = []
        for declaration in flags:
            flag = materialize(declaration)
            if flag.name not in self._registry:
                self._dynamic.add(flag.name)
            registered.append(self._registry.add(flag))
            logger.debug("registered dynamic flag %r on %r", flag.name, self.name)
        return registered

    async def _preload(self, tokens):
        for node, chain, level, _ in self._walk(tokens):
            try:
                await _matcher.discover(node, level, help=True, chain=chain)
            except ParseError as exception:
                logger.debug("dynamic preload stopped on %r: %s", node.name, exception)

    async def _simulate(self, tokens):
        steps, accumulated = [], {}
        for node, chain, level, remaining in self._walk(tokens):
            step = {"level": " ".join((self.prog, *chain)), "tokens": level, "values": None, "error": None}
            try:
                await _matcher.discover(node, level, chain=chain)
                values, _ = await _matcher.match(node.registry, level, chain=chain)
            except ParseError as exception:
                step["error"] = exception.message
            else:
                step["values"] = values
                accumulated |= values
            step["accumulated"] = dict(accumulated)
            step["remaining"] = remaining
            steps.append(step)
        return steps

    async def _level(self, tokens, options, chain):
        await _matcher.discover(self, tokens, help=options.preload, chain=chain)
        values, first = await _matcher.match(self._registry, tokens, chain=chain)
        await DefaultsAndEnvResolver(self.environ, _resolver, sync=self._sync).resolve(self._registry, values)
        return values, first

    async def _resolve(self, tokens, parent_args, chain, options, parent):
        """
        Parse this level and recurse into the addressed child.

        Returns (final_args, handler_context) of the terminal node.
        """
        index = next((index for index, token in enumerate(tokens) if token in self._children), None)
        level = tokens if index is None else tokens[:index]

        values, first = await self._level(level, options, chain)
        if first < len(level):
            raise UnknownCommandError(f"Unknown command: '{level[first]}'", chain=chain, token=level[first])

        combined = {**parent_args, **values}
        if index is None:
            return combined, HandlerContext(dict(values), dict(parent_args), chain, self, parent, options)

        name = tokens[index]
        logger.debug("descending from %r into %r", self.name, name)
        return await self._children[name]._resolve(tokens[index + 1:], combined, (*chain, name), options, self)

    def _exit(self, code, message, kind, data=None):
        result = ParseResult(code == 0, code, message, kind, True, data)
        if self._auto_exit:
            sys.exit(code)
        return result

    def _report(self, fault):
        trigger(fault, handle=True, exit=self._auto_exit, prog=self.prog, fancy=self._fancy, colorful=self._colorful)
        return ParseResult(False, 1, fault.message, OutcomeKind.ERROR, True)

    async def parse(self, tokens=Unset, /, *, skip_help=False, skip_handlers=False, wait=True, protocol=False, preload=False):
        """
        Parse tokens against the tree rooted at this node.

        Parameters
        - tokens: Unset (sys.argv[1:]), a shell-like string or an iterable of strings.
        - skip_help: never intercept help (no auto-help, help aliases ignored).
        - skip_handlers: resolve arguments without running the handler.
        - wait: await asynchronous handlers (otherwise Arguments.pending holds the task).
        - protocol: marker passed to the handler through HandlerContext.options.
        - preload: dynamic registration callbacks see help=True.

        Returns
        - Arguments on success, ParseResult for help/debug outcomes and handled errors.

        Raises
        - ParseError / HandlerError when handle_errors is off (or in fuzzy mode).
        """
        tokens = _tokenize(tokens, "parse")
        options = ParseOptions(bool(skip_help), bool(skip_handlers), bool(wait), bool(protocol), bool(preload))
        self._reset()
        logger.debug("parsing %r with tokens %r", self.name, tokens)

        outcome = await GlobalChecksGate(_resolver).check(self, tokens, options)
        if isinstance(outcome, ParseResult):
            self._last = outcome
            return outcome

        try:
            _, chain, nodes = self._identify(outcome)
            values, context = await self._resolve(outcome, {}, (), options, None)
            args = Arguments(values, chain=chain, tokens=tokens)
            if not self._fuzzy:
                _validator.validate(nodes, args, chain=chain)
            result = await _executor.execute(
                context, args, skip=options.skip_handlers, wait=options.wait, fuzzy=self._fuzzy, tokens=outcome
            )
        except (ParseError, HandlerError) as fault:
            if not self.handle_errors:
                raise
            self._last = self._report(fault)
            return self._last

        if isinstance(result, Pending):
            args.pending = result
        self._last = args
        return args

    def help(self):
        renders.render_help(self)

    def dump(self, path=Unset, /):
        """
        Dump this subtree's configuration (JSON for ".json" paths, text otherwise,
        the console without a path).
        """
        return renders.dump(self, path)

    def __invoke__(self, prompt=Unset):
        """
        Parse prompt synchronously (see parse()); returns the parse outcome.
        """
        return asyncio.run(self.parse(prompt))


def command(source=Unset, /, *args, **kwargs):
    """
    Create a Command or return a decorator to build it later.

    Invocation modes
    - Direct handler:
        cmd = command(func, name=..., flags=[...])
    - Named decorator:
        @command("deploy", flags=[...])
        def deploy(context): ...
    - Bare decorator:
        @command(flags=[...])
        def deploy(context): ...
    - Handler-less node:
        cmd = command("db", handler=None)

    Parameters
    - source: Unset | str | Callable | Command
    - *args, **kwargs: forwarded to Command(...).
    """
    if isinstance(source, str):
        args = (source, *args)
        if "handler" in kwargs:
            return Command(*args, **kwargs)
        source = Unset

    @rename("command")
    def wrapper(source, /):
        if isinstance(source, Command):
            if args or kwargs:
                raise TypeError("@command() cannot apply options to an existing command")
            return source
        if not callable(source):
            raise TypeError("@command() must be applied to a callable or a command")
        return Command(*args, handler=source, **kwargs)

    return wrapper(source) if source is not Unset else wrapper


def invoke(object, prompt=Unset, /):
    """
    Convenience runner for commands or callables.

    - object providing __invoke__: called with prompt.
    - plain callable: wrapped with command(...) first.

    Returns the parse outcome (unless the command exits the process).
    """
    if hasattr(object, "__invoke__") and callable(object.__invoke__):
        return object.__invoke__(prompt)

    if callable(object):
        return invoke(command(object), prompt)

    target = "argument" if prompt is Unset else "first argument"
    raise TypeError(f"invoke() {target} must implement __invoke__ method") from None


__all__ = (
    "Command",
    "command",
    "invoke",
)

del CommandType
