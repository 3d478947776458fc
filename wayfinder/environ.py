"""
Environment fallback, defaults and configuration files.

Precedence for every flag of a level: token > environment > default.

- EnvironmentStore: MutableMapping view over a string store (os.environ unless
  injected) that encodes written values: JSON for lists, dicts and models,
  "true"/"false" for booleans, str() otherwise.
- DefaultsAndEnvResolver: fills the values a level's tokens did not provide,
  then writes env-bound values back to the store.
- load_env_file / to_flag_values / merge_env_values: the --s-with-env
  pipeline (read a .json, .yaml, .toml or dotenv file, convert its keys to flag
  values, append them as tokens for flags the command line did not set).
"""
import json
import logging
import os
import pathlib
import tomllib
from collections.abc import Mapping, MutableMapping

import pydantic
import yaml

from .faults import ParseError, EnvironmentFileError
from .utils import Unset
from .values import ValueResolver

logger = logging.getLogger(__name__)


class EnvironmentStore(MutableMapping):
    """
    String-valued store consulted for env-bound flags.

    Any MutableMapping may back it (a plain dict in tests).
    """

    def __init__(self, backing=Unset, /):
        self._backing = os.environ if backing is Unset else backing

    @staticmethod
    def encode(value, /):
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, pydantic.BaseModel):
            return value.model_dump_json()
        if isinstance(value, dict | list | tuple):
            return json.dumps(value, default=str)
        return str(value)

    def __getitem__(self, key):
        return self._backing[key]

    def __setitem__(self, key, value):
        self._backing[key] = self.encode(value)

    def __delitem__(self, key):
        del self._backing[key]

    def __iter__(self):
        return iter(self._backing)

    def __len__(self):
        return len(self._backing)

    def __repr__(self):
        return f"environment-store({"os.environ" if self._backing is os.environ else type(self._backing).__name__})"


class DefaultsAndEnvResolver:
    def __init__(self, store, resolver=Unset, /, *, sync=True):
        self._store = store
        self._resolver = ValueResolver() if resolver is Unset else resolver
        self._sync = bool(sync)

    async def fallback(self, flags, output, /):
        """
        Fill absent env-bound flags from the first bound variable present.

        A value that does not convert is logged and skipped, so the flag falls
        through to its default.
        """
        for flag in flags:
            if not flag.env or not flag.absent(output):
                continue
            if (variable := next((name for name in flag.env if name in self._store), None)) is None:
                continue
            try:
                value = await self._resolver.convert(flag, self._store[variable])
            except (ValueError, TypeError, LookupError, ParseError) as exception:
                logger.warning("failed to parse environment variable %r for flag %r: %s", variable, flag.name, exception)
                continue
            if flag.multiple and not isinstance(value, list):
                value = [value]
            output[flag.name] = value

    def defaults(self, flags, output, /):
        for flag in flags:
            if flag.default is Unset or not flag.absent(output):
                continue
            default = flag.default
            if flag.multiple and not isinstance(default, list):
                default = [default]
            output[flag.name] = default

    def sync(self, flags, output, /):
        for flag in flags:
            if not flag.env or flag.absent(output):
                continue
            for variable in flag.env:
                self._store[variable] = output[flag.name]
            logger.debug("synced flag %r to %s", flag.name, ", ".join(flag.env))

    async def resolve(self, flags, output, /):
        flags = list(flags)
        await self.fallback(flags, output)
        self.defaults(flags, output)
        if self._sync:
            self.sync(flags, output)
        return output


def _parse_dotenv(content):
    values = {}
    for line in content.splitlines():
        if not (line := line.strip()) or line.startswith("#"):
            continue
        key, separator, value = line.partition("=")
        if not separator or not (key := key.strip()):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key] = value
    return values


def load_env_file(path, /):
    """
    Read a configuration file into a mapping.

    The suffix picks the format: .json, .yaml/.yml, .toml, anything else is
    read as dotenv lines (KEY=value, "#" comments, optional matching quotes).

    Raises
    - EnvironmentFileError: missing/unreadable file, syntax error, or a
      document that is not a mapping.
    """
    path = pathlib.Path(path)
    if not path.is_file():
        raise EnvironmentFileError(f"configuration file not found: {path}", path=str(path))
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exception:
        raise EnvironmentFileError(f"cannot read {path}: {exception}", path=str(path)) from exception

    try:
        match path.suffix.lower():
            case ".json":
                data = json.loads(content)
            case ".yaml" | ".yml":
                data = yaml.safe_load(content)
            case ".toml":
                data = tomllib.loads(content)
            case _:
                data = _parse_dotenv(content)
    except (json.JSONDecodeError, yaml.YAMLError, tomllib.TOMLDecodeError) as exception:
        raise EnvironmentFileError(f"cannot parse {path}: {exception}", path=str(path)) from exception

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise EnvironmentFileError(f"{path} must contain a mapping at the top level", path=str(path))
    return dict(data)


def _holders(nodes):
    """
    Map flag names to (node, flag) of the deepest node declaring them.
    """
    holders = {}
    for node in nodes:
        for flag in node.registry:
            holders[flag.name] = (node, flag)
    return holders


async def to_flag_values(raw, nodes, /, *, resolver=Unset):
    """
    Convert configuration keys to values of the flags along a node path.

    Keys match a flag by exact name, then by a bound environment variable
    name, then by case-insensitive name. Unknown keys are ignored; values that
    do not convert are logged and skipped.
    """
    resolver = ValueResolver() if resolver is Unset else resolver
    holders = _holders(nodes)
    bound = {variable: name for name, (_, flag) in holders.items() for variable in flag.env}
    folded = {}
    for name in holders:
        folded.setdefault(name.casefold(), name)

    values = {}
    for key, value in raw.items():
        key = str(key)
        if (name := key if key in holders else bound.get(key, folded.get(key.casefold()))) is None:
            logger.debug("configuration key %r matches no flag", key)
            continue
        flag = holders[name][1]
        try:
            values[name] = await resolver.convert(flag, value)
        except (ValueError, TypeError, LookupError, ParseError) as exception:
            logger.warning("could not convert configuration value %r for flag %r: %s", key, name, exception)
    return values


def _present(flag, tokens):
    return any(token == option or token.startswith(option + "=") for token in tokens for option in flag.options)


def merge_env_values(values, nodes, chain, tokens, /):
    """
    Append configuration values as tokens for flags absent from tokens.

    Each value lands in the token segment of the deepest node declaring the
    flag, so it is parsed at that node's level. Booleans become a bare alias
    when true; lists of multiple flags become repeated aliases.
    """
    nodes, chain = list(nodes), list(chain)
    holders = _holders(nodes)

    segments, rest = [], list(tokens)
    for name in chain:
        index = rest.index(name)
        segments.append(rest[:index])
        rest = rest[index + 1:]
    segments.append(rest)

    for name, value in values.items():
        node, flag = holders[name]
        if value is None or _present(flag, tokens):
            continue
        segment = segments[nodes.index(node)]
        option = max(node.registry.options(flag.name) or flag.options, key=len)
        if flag.switch or flag.type is bool:
            if value:
                segment.append(option)
            continue
        for item in value if flag.multiple and isinstance(value, list) else (value,):
            if flag.ligature:
                segment.append(f"{option}={EnvironmentStore.encode(item)}")
            else:
                segment.extend((option, EnvironmentStore.encode(item)))

    merged = list(segments[0])
    for name, segment in zip(chain, segments[1:]):
        merged.append(name)
        merged.extend(segment)
    return merged


__all__ = (
    "EnvironmentStore",
    "DefaultsAndEnvResolver",
    "load_env_file",
    "to_flag_values",
    "merge_env_values",
)
