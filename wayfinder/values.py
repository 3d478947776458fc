"""
Value resolution: turn raw token values into typed, validated flag values.

Pipeline (per matched value)
1. coerce: apply the flag's type.
   • bool: booleans pass through, strings are true when they contain
     "true", "yes" or "1" (case-insensitive), anything else goes through bool().
   • schema (pydantic model or TypeAdapter): strings are decoded as JSON, then
     validated. Decode and validation failures name the flag.
   • list / dict: JSON first; lists fall back to a comma split.
   • any other callable (str, int, float, number, custom parsers): called with
     the raw value, awaited when it returns an awaitable. ValueError, TypeError
     and LookupError become CoercionError.
2. check: choices membership, then the custom validate(value, args) hook.
3. store: appended for multiple flags, assigned otherwise.

convert() is the lenient sibling used for environment variables and
configuration files, where values arrive as strings (or already-typed YAML,
JSON and TOML scalars).
"""
import json
import logging
import re
from collections.abc import Mapping
from types import MappingProxyType

import pydantic

from .faults import (
    CoercionError,
    InvalidJsonError,
    SchemaValidationError,
    InvalidChoiceError,
    ValidationFailedError,
)
from .utils import settle

logger = logging.getLogger(__name__)

TRUTHY = re.compile(r"(true|yes|1)", re.IGNORECASE)

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def number(value, /):
    """
    Numeric converter behind the "number" type name.

    Integral input gives an int, anything else numeric gives a float.
    """
    if isinstance(value, bool):
        raise TypeError("number() argument must be a string or a number, not bool")
    if isinstance(value, int | float):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def is_schema(object, /):
    """
    True for declarative schemas: pydantic model classes and TypeAdapter instances.
    """
    if isinstance(object, pydantic.TypeAdapter):
        return True
    return isinstance(object, type) and issubclass(object, pydantic.BaseModel)


def _validate_schema(schema, data):
    if isinstance(schema, pydantic.TypeAdapter):
        return schema.validate_python(data)
    return schema.model_validate(data)


def _listify(value):
    if isinstance(value, list | tuple):
        return list(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return decoded
        return [part.strip() for part in value.split(",")]
    return [value]


def _objectify(value):
    if isinstance(value, Mapping):
        return dict(value)
    decoded = json.loads(value)  # JSONDecodeError is a ValueError
    if not isinstance(decoded, dict):
        raise ValueError("expected a JSON object")
    return decoded


def _display(value):
    return repr(value) if isinstance(value, str) else str(value)


class ValueResolver:
    """
    Coerces and validates raw values for one flag at a time.

    The resolver is stateless; one instance is shared by every command node.
    """

    async def coerce(self, flag, raw, /, *, chain=()):
        type = flag.type

        if type is bool:
            if isinstance(raw, bool):
                return raw
            if isinstance(raw, str):
                return TRUTHY.search(raw) is not None
            return bool(raw)

        if is_schema(type):
            try:
                data = json.loads(raw) if isinstance(raw, str) else raw
            except json.JSONDecodeError as exception:
                raise InvalidJsonError(
                    f"Invalid JSON for flag '{flag.name}': {exception}", chain=chain, flag=flag.name
                ) from exception
            try:
                return await settle(_validate_schema(type, data))
            except pydantic.ValidationError as exception:
                raise SchemaValidationError(
                    f"Validation failed for flag '{flag.name}': {exception}", chain=chain, flag=flag.name
                ) from exception

        try:
            if type is list:
                return _listify(raw)
            if type is dict:
                return _objectify(raw)
            return await settle(type(raw))
        except (ValueError, TypeError, LookupError) as exception:
            raise CoercionError(
                f"Invalid value '{raw}' for flag '{flag.name}': {exception}", chain=chain, flag=flag.name
            ) from exception

    def check(self, flag, value, args, /, *, chain=()):
        if flag.choices and value not in flag.choices:
            raise InvalidChoiceError(
                f"Invalid value '{value}' for flag '{flag.name}'. "
                f"Allowed values: {", ".join(map(_display, flag.choices))}",
                chain=chain,
                flag=flag.name,
                choices=flag.choices,
            )

        if not flag.validate:
            return

        verdict = flag.validate(value, MappingProxyType(args))
        if verdict is True:
            return
        if isinstance(verdict, str) and verdict:
            raise ValidationFailedError(verdict, chain=chain, flag=flag.name)
        if not verdict:
            raise ValidationFailedError(
                f"Validation failed for flag '{flag.name}' with value '{value}'", chain=chain, flag=flag.name
            )

    async def resolve(self, flag, raw, args, /, *, chain=()):
        """
        Coerce, check and store one raw value into args; returns the typed value.
        """
        value = await self.coerce(flag, raw, chain=chain)
        self.check(flag, value, args, chain=chain)
        if flag.multiple:
            if not isinstance(args.get(flag.name), list):
                args[flag.name] = []
            args[flag.name].append(value)
        else:
            args[flag.name] = value
        return value

    async def convert(self, flag, value, /):
        """
        Convert an environment or configuration value to the flag's type.

        Raises ValueError, TypeError or LookupError when the value does not
        fit; callers log and skip such values instead of failing the parse.
        """
        if value is None:
            return None
        if flag.multiple and flag.type is not list:
            return [await self._convert(flag, item) for item in _listify(value)]
        return await self._convert(flag, value)

    async def _convert(self, flag, value):
        type = flag.type

        if type is bool:
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                if (lowered := value.strip().lower()) in _TRUE:
                    return True
                if lowered in _FALSE:
                    return False
            raise ValueError(f"cannot convert {value!r} to boolean for flag {flag.name!r}")

        if is_schema(type):
            data = json.loads(value) if isinstance(value, str) else value
            return await settle(_validate_schema(type, data))

        if type is list:
            return _listify(value)
        if type is dict:
            return _objectify(value)
        if type is str:
            if isinstance(value, dict | list):
                return json.dumps(value)
            if isinstance(value, bool):
                return "true" if value else "false"
            return str(value)
        if type in (int, float, number):
            if isinstance(value, bool):
                raise ValueError(f"cannot convert {value!r} to number for flag {flag.name!r}")
            return type(value if isinstance(value, int | float) else str(value).strip())

        return await settle(type(value))


__all__ = (
    "ValueResolver",
    "number",
    "is_schema",
    "TRUTHY",
)
