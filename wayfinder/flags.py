r"""
Wayfinder flag declarations and the per-node flag registry.

Overview
- Flag: immutable declaration of one named flag (aliases, type, cardinality,
  defaults, environment bindings, validation and dynamic registration).
- FlagInheritance: how a child node snapshots its parent's flags at attach time.
- FlagRegistry: name -> flag and alias -> name tables of a single command node,
  with overwrite/collision policy (warn by default, raise when strict).
- @flag(...): build a Flag whose type is the decorated parser.

Metadata (sanitized on construction)
- name: required str, starts with a letter, then letters, digits, "_" or "-".
- options: one or more aliases matching r"--?[^\W\d_][\w]*(-\w+)*", unique.
- type: str, int, float, bool, list, dict, a type name ("string", "number",
  "boolean", "array", "object"), a pydantic model / TypeAdapter, or a callable.
  Defaults to bool for switches and str otherwise.
- mandatory: bool or callable(args) -> bool.
- choices: Iterable (duplicates rejected unless a Set).
- env: str or Iterable[str] of environment variable names.
- validate / register: Unset or callable.
- descr / metavar: Unset or non-empty str.

Quick example:
    >>> from wayfinder.flags import Flag, FlagRegistry
    >>> registry = FlagRegistry([Flag("port", "-p", "--port", type=int, default=8080)])
    >>> registry.find("--port").name
    'port'
"""
import copy
import functools
import operator
import re
from collections.abc import Iterable, Mapping, Set
from enum import StrEnum

from rich.text import Text

from .faults import (
    FaultCode,
    DuplicateFlagError,
    OptionCollisionError,
    InvalidFlagError,
    FlagOverwriteWarning,
    FlagCollisionWarning,
    trigger,
)
from .utils import *
from .values import number, is_schema

_TYPENAMES = {
    "string": str,
    "number": number,
    "boolean": bool,
    "array": list,
    "object": dict,
}

_ALIASES = {
    "required": "mandatory",
    "description": "descr",
    "enum": "choices",
}


class FlagInheritance(StrEnum):
    """
    Inheritance mode of a child node.

    - NONE: the child sees only its own flags.
    - DIRECT_PARENT_ONLY: snapshot of the parent's flags at attach time.
    - ALL_PARENTS: snapshot of every ancestor's flags at attach time.
    """
    NONE = "none"
    DIRECT_PARENT_ONLY = "direct-parent-only"
    ALL_PARENTS = "all-parents"

    @classmethod
    def _missing_(cls, value):
        # legacy boolean form
        if value is True:
            return cls.DIRECT_PARENT_ONLY
        if value is False or value is None:
            return cls.NONE
        return None


class FlagType(type):
    """
    Metaclass exposing declared fields as read-only properties.

    Conventions
    - __introspectable__ names become mirror() properties over "_name" fields.
    - __typename__ is the hyphenated lower-case class name, used in messages.
    - __displayable__ (if set) narrows what __rich_repr__ yields.
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


def _sanitize_naming(cls, metadata, /):
    """
    Internal: validate the flag name and its option aliases.

    The name keys the resolved arguments mapping; aliases are the tokens users
    type. Aliases keep their declaration order (help lists them sorted by length).
    """
    if not isinstance(name := metadata["name"], str):
        raise TypeError(f"{cls.__typename__} 'name' must be a string")
    elif not (name := name.strip()):
        raise ValueError(f"{cls.__typename__} 'name' cannot be empty")
    elif not re.fullmatch(r"[^\W\d_][\w-]*", name):
        raise ValueError(f"{cls.__typename__} 'name' must start with a letter and contain only letters, digits, '_' or '-'")
    metadata["name"] = name

    options = []
    if not metadata["options"]:
        raise TypeError(f"{cls.__typename__} {name!r} must specify at least one option")

    for option in metadata["options"]:
        if not isinstance(option, str):
            raise TypeError(f"{cls.__typename__} options must be strings")
        elif not (option := option.strip()):
            raise ValueError(f"{cls.__typename__} options cannot be empty-strings")
        elif not re.fullmatch(r"--?[^\W\d_]\w*(-\w+)*", option):
            raise ValueError(f"{cls.__typename__} option {option!r} must be a valid shell-style option name")
        elif option in options:
            raise ValueError(f"{cls.__typename__} options cannot contain duplicates")
        options.append(option)

    metadata["options"] = tuple(options)


def _sanitize_typing(cls, metadata, /):
    """
    Internal: normalize the value type and the value-shape switches.

    - type names map to their primitives ("number" -> number()).
    - switches default to bool and cannot be ligated.
    - choices are stabilized into a tuple (a Set is kept as given).
    """
    type = metadata["type"]
    if isinstance(type, str):
        if type.lower() not in _TYPENAMES:
            raise ValueError(f"{cls.__typename__} 'type' name must be one of {", ".join(map(repr, _TYPENAMES))}")
        type = _TYPENAMES[type.lower()]
    elif type is Unset:
        type = bool if metadata["switch"] else str
    elif not is_schema(type) and not callable(type):
        raise TypeError(f"{cls.__typename__} 'type' must be a type name, a schema or a callable")
    metadata["type"] = type

    if metadata["switch"]:
        metadata["ligature"] = False

    if not isinstance(choices := metadata["choices"], Iterable) or isinstance(choices, str):
        raise TypeError(f"{cls.__typename__} 'choices' must be a non-string iterable")
    if not isinstance(choices, Set):
        sanitized = []
        for choice in choices:
            if choice in sanitized:
                raise ValueError(f"{cls.__typename__} 'choices' cannot contain duplicates")
            sanitized.append(choice)
        choices = tuple(sanitized)
    metadata["choices"] = choices


def _sanitize_behavior(cls, metadata, /):
    """
    Internal: validate hooks (mandatory, validate, register) and env bindings.
    """
    if not isinstance(mandatory := metadata["mandatory"], bool) and not callable(mandatory):
        raise TypeError(f"{cls.__typename__} 'mandatory' must be a boolean or a callable")

    for hook in ("validate", "register"):
        if metadata[hook] is not Unset and not callable(metadata[hook]):
            raise TypeError(f"{cls.__typename__} {hook!r} must be callable")

    env = metadata["env"]
    if isinstance(env, str):
        env = (env,)
    if not isinstance(env, Iterable):
        raise TypeError(f"{cls.__typename__} 'env' must be a string or an iterable of strings")

    names = []
    for variable in env:
        if not isinstance(variable, str):
            raise TypeError(f"{cls.__typename__} 'env' names must be strings")
        elif not (variable := variable.strip()):
            raise ValueError(f"{cls.__typename__} 'env' names cannot be empty-strings")
        if variable not in names:
            names.append(variable)
    metadata["env"] = tuple(names)


def _sanitize_display(cls, metadata, /):
    for field in ("descr", "metavar"):
        if metadata[field] is None:
            metadata[field] = Unset

    if isinstance(descr := metadata["descr"], Iterable) and not isinstance(descr, str | Text):
        descr = "\n".join(map(str, descr))
    if not isinstance(descr, str | Text | Unset):
        raise TypeError(f"{cls.__typename__} 'descr' must be a string")
    elif isinstance(descr, str) and not (descr := descr.strip()):
        raise ValueError(f"{cls.__typename__} 'descr' cannot be empty")
    metadata["descr"] = coalesce(descr)

    if not isinstance(metavar := metadata["metavar"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'metavar' must be a string")
    elif isinstance(metavar, str) and not (metavar := metavar.strip()):
        raise ValueError(f"{cls.__typename__} 'metavar' cannot be empty")
    metadata["metavar"] = coalesce(metavar)


class Flag(metaclass=FlagType):
    """
    Named flag declaration.

    A flag is matched by any of its option aliases, either split ("--port 80")
    or ligated ("--port=80"), and resolves to a single value or, when
    multiple, to the list of every occurrence.

    Properties
    - The names listed in __introspectable__ are exposed as read-only attributes
      on instances, mirroring the sanitized metadata values.
    - default is returned as a deep copy so list/dict defaults are never shared
      between parses.
    """

    __introspectable__ = (
        "name",
        "options",
        "type",
        "mandatory",
        "choices",
        "multiple",
        "ligature",
        "switch",
        "env",
        "validate",
        "descr",
        "metavar",
        "register",
    )
    __displayable__ = (
        "name",
        "options",
        "type",
        "mandatory",
        "default",
        "choices",
        "multiple",
        "switch",
        "env",
    )

    def __new__(
            cls,
            name,
            /,
            *options,
            type=Unset,
            mandatory=False,
            default=Unset,
            choices=(),
            multiple=False,
            ligature=True,
            switch=False,
            env=(),
            validate=Unset,
            descr=Unset,
            metavar=Unset,
            register=Unset,
    ):
        """
        Construct a Flag with the provided metadata.

        Parameters
        - name: key of the flag in the resolved arguments mapping.
        - options: one or more aliases ("-p", "--port").
        - type: value type, type name, schema or parser callable.
        - mandatory: bool, or callable receiving the final arguments.
        - default: value used when neither a token nor the environment provides one.
        - choices: allowed values.
        - multiple: collect every occurrence into a list.
        - ligature: accept the "--alias=value" form.
        - switch: presence-only, records True and never takes a value.
        - env: environment variables consulted when no token provides a value.
        - validate: callable(value, args) -> True | str | falsy.
        - descr / metavar: help text and value label.
        - register: dynamic registration callback (see wayfinder.matching).
        """
        metadata = {
            "name": name,
            "options": options,
            "type": type,
            "mandatory": mandatory,
            "default": default,
            "choices": choices,
            "multiple": bool(multiple),
            "ligature": bool(ligature),
            "switch": bool(switch),
            "env": env,
            "validate": validate,
            "descr": descr,
            "metavar": metavar,
            "register": register,
        }
        _sanitize_naming(cls, metadata)
        _sanitize_typing(cls, metadata)
        _sanitize_behavior(cls, metadata)
        _sanitize_display(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, object if name in ("default", "validate", "register") else coalesce(object))
        return self

    @property
    def default(self):
        return copy.deepcopy(self._default)

    @property
    def typename(self):
        """
        Display name of the value type ("string", "number", a model name...).
        """
        for typename, primitive in _TYPENAMES.items():
            if self._type is primitive:
                return typename
        if self._type in (int, float):
            return "number"
        return getattr(self._type, "__name__", "schema" if is_schema(self._type) else "custom")

    @property
    def dynamic(self):
        return self._register is not Unset

    def absent(self, args, /):
        """
        True when args holds no usable value for this flag.

        None and missing keys are absent; so is an empty list for multiple flags.
        """
        value = args.get(self._name)
        return value is None or (self._multiple and isinstance(value, list) and not value)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        metadata = {name: getattr(self, "_" + name) for name in type(self).__introspectable__ if name not in ("name", "options")}
        metadata["default"] = self._default
        metadata |= overrides
        return type(self)(metadata.pop("name", self._name), *metadata.pop("options", self._options), **metadata)

    @classmethod
    def from_mapping(cls, mapping, /):
        """
        Build a Flag from a plain mapping declaration.

        Keys mirror the constructor; "options" may be a string or an iterable,
        and "required", "description" and "enum" are accepted as aliases of
        "mandatory", "descr" and "choices".
        """
        if not isinstance(mapping, Mapping):
            raise TypeError("from_mapping() argument must be a mapping")
        metadata = {_ALIASES.get(key, key): value for key, value in mapping.items()}
        if "name" not in metadata:
            raise TypeError("flag mapping must specify a 'name'")
        options = metadata.pop("options", ())
        if isinstance(options, str):
            options = (options,)
        return cls(metadata.pop("name"), *options, **metadata)


def materialize(object, /):
    """
    Return object as a Flag; mappings are converted with Flag.from_mapping.
    """
    if isinstance(object, Flag):
        return object
    if isinstance(object, Mapping):
        try:
            return Flag.from_mapping(object)
        except (TypeError, ValueError) as exception:
            raise InvalidFlagError(f"invalid flag declaration: {exception}") from exception
    raise InvalidFlagError(f"expected a flag or a mapping, got {type(object).__name__!r}")


class FlagRegistry:
    """
    Flags of a single command node, indexed by name and by option alias.

    Policy
    - re-adding a name overwrites the old flag (FlagOverwriteWarning) and drops
      its alias mappings; strict registries raise DuplicateFlagError instead.
    - aliases already owned by another flag are reassigned to the newcomer
      (FlagCollisionWarning per previous owner, recorded in collisions());
      strict registries raise OptionCollisionError and add nothing.
    - inherit() installs a parent's flag silently and never steals aliases.
    """

    def __init__(self, flags=(), /, *, strict=False):
        self._flags = {}
        self._aliases = {}
        self._collisions = []
        self._strict = bool(strict)
        self.extend(flags)

    @property
    def strict(self):
        return self._strict

    @strict.setter
    def strict(self, value):
        self._strict = bool(value)

    @property
    def names(self):
        return tuple(self._flags)

    @property
    def flags(self):
        return tuple(self._flags.values())

    def add(self, flag, /):
        flag = materialize(flag)

        if overwrite := flag.name in self._flags:
            if self._strict:
                raise DuplicateFlagError(f"flag {flag.name!r} already exists", flag=flag.name)

        owners = {}
        for option in flag.options:
            if (owner := self._aliases.get(option)) is not None and owner != flag.name:
                owners.setdefault(owner, []).append(option)

        if owners and self._strict:
            owner, options = next(iter(owners.items()))
            raise OptionCollisionError(
                f"option(s) {", ".join(map(repr, options))} of flag {flag.name!r} already used by flag {owner!r}",
                flag=flag.name,
            )

        if overwrite:
            trigger(FlagOverwriteWarning(f"flag {flag.name!r} is being overwritten", code=FaultCode.FLAG_OVERWRITE), stacklevel=4)
            self._unmap(flag.name)

        for owner, options in owners.items():
            self._collisions.append((tuple(options), owner, flag.name))
            trigger(
                FlagCollisionWarning(
                    f"option(s) {", ".join(map(repr, options))} of flag {owner!r} reassigned to flag {flag.name!r}",
                    code=FaultCode.FLAG_COLLISION,
                ),
                stacklevel=4,
            )

        self._flags[flag.name] = flag
        for option in flag.options:
            self._aliases[option] = flag.name
        return flag

    def extend(self, flags, /):
        return [self.add(flag) for flag in flags]

    def inherit(self, flag, /):
        """
        Install flag unless its name is taken; returns whether it was installed.
        """
        if flag.name in self._flags:
            return False
        self._flags[flag.name] = flag
        for option in flag.options:
            self._aliases.setdefault(option, flag.name)
        return True

    def remove(self, name, /):
        if name not in self._flags:
            return False
        del self._flags[name]
        self._unmap(name)
        return True

    def _unmap(self, name):
        for option in [option for option, owner in self._aliases.items() if owner == name]:
            del self._aliases[option]

    def get(self, name, default=None, /):
        return self._flags.get(name, default)

    def find(self, option, /):
        """
        Flag currently owning the given alias, or None.
        """
        if (name := self._aliases.get(option)) is None:
            return None
        return self._flags[name]

    def options(self, name, /):
        """
        Aliases of the named flag that still map to it, in declaration order.
        """
        if (flag := self._flags.get(name)) is None:
            return ()
        return tuple(option for option in flag.options if self._aliases.get(option) == name)

    def collisions(self):
        return list(self._collisions)

    def clear(self):
        self._flags.clear()
        self._aliases.clear()
        self._collisions.clear()

    def __contains__(self, object):
        if isinstance(object, Flag):
            object = object.name
        return object in self._flags

    def __iter__(self):
        return iter(tuple(self._flags.values()))

    def __len__(self):
        return len(self._flags)

    def __repr__(self):
        return f"flag-registry({", ".join(self._flags)})"


def flag(name, /, *options, **kwargs):
    """
    Decorator/factory for declaring a flag parsed by a custom callable.

    Usage
        @flag("port", "-p", "--port", default=8080)
        def port(value):
            return int(value)

    The decorator returns the Flag (not the function); the decorated callable
    becomes its type and may be a coroutine function.
    """
    if "type" in kwargs:
        raise TypeError("@flag() takes its type from the decorated callable")

    @rename("flag")
    def wrapper(callback, /):
        if not callable(callback):
            raise TypeError("@flag() must be applied to a callable")
        return Flag(name, *options, type=callback, **kwargs)

    return wrapper


__all__ = (
    "Flag",
    "FlagInheritance",
    "FlagRegistry",
    "flag",
    "materialize",
)

del FlagType
