"""
Wayfinder faults (errors and warnings) and rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for every user-facing issue.
- CommandException: base error carrying a message and a read-only options
  mapping (command chain, policy switches, context); knows how to render
  itself with rich and how to surface itself (raise or print).
- StructuralError / ParseError / HandlerError: the three fault families.
  • StructuralError: the command tree or a flag declaration is invalid. Raised
    at declaration/attach time and never recovered.
  • ParseError: the tokens do not fit the declared tree (unknown command,
    coercion, choices, validation, missing mandatory flags, env-file load).
  • HandlerError: a user handler raised (synchronously or asynchronously).
- CommandWarning: declaration-time warnings (flag overwrite, alias collision),
  surfaced through the warnings module.
- trigger(): central entry point to surface any fault with runtime options.

Policy options (merged in by trigger)
- handle: print the fault instead of raising it.
- exit: after printing, terminate the process with status 1.
- fancy / colorful: rendering switches.
- prog: program name used in the “try --help” hint.

Host hooks (read from __main__)
- __styles__: palette overrides, __codes__: code labels, __prog__: program name.
"""
import copy
import sys
import warnings
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, coalesce

console = Console(stderr=True)


class FaultCode(IntEnum):
    """
    canonical fault codes used across the engine (stable identifiers).

    grouping
    - structural (101xx): tree and declaration problems.
    - parsing (111xx): routing, coercion, choices, validation, mandatory, env files.
    - handlers (1115x): failures raised by user handlers.
    - warnings (121xx): declaration-time overwrites and alias collisions.
    """
    # --- structural errors (10xxx) ---
    DUPLICATE_COMMAND           = 10101
    INVALID_COMMAND             = 10102
    DUPLICATE_FLAG              = 10111
    OPTION_COLLISION            = 10112
    INVALID_FLAG                = 10113

    # --- parse errors (11xxx) ---
    UNKNOWN_COMMAND             = 11101
    COERCION_FAILED             = 11111
    INVALID_JSON                = 11112
    SCHEMA_VALIDATION           = 11113
    INVALID_CHOICE              = 11121
    VALIDATION_FAILED           = 11122
    MISSING_MANDATORY           = 11131
    ENVIRONMENT_FILE            = 11141

    # --- handler errors (11xxx) ---
    HANDLER_FAILED              = 11151

    # --- warnings (12xxx) ---
    FLAG_OVERWRITE              = 12111
    FLAG_COLLISION              = 12112

    def normalize(self):
        """
        return a host-normalized string for this code.

        the host application can provide a __codes__ mapping in __main__
        to override numeric ids with friendlier labels.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


class CommandException(Exception):
    __code__ = Unset

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(coalesce(message, ""))
        self.message = coalesce(message, "")
        self.options = MappingProxyType(options)

    def __str__(self):
        return self.message

    @property
    def code(self):
        return self.options.get("code", type(self).__code__)

    @property
    def chain(self):
        """
        command chain (node names below the root) active when the fault occurred.
        """
        return tuple(self.options.get("chain", ()))

    def __rich__(self):
        main = __import__("__main__")

        styles = defaultdict(str, {
            # header parts
            "prog-name": "bold #E6E6F0",  # near-white program name
            "code": "bold #00E5FF",  # neon cyan fault code
            "error-label": "bold #FF4DA6",  # friendly pinky label

            # body
            "error-message": "#C8C8D0",  # soft light gray message
            "hint": "italic #9CA3AF dim",  # muted hint
        } | getattr(main, "__styles__", {}))

        colorful = self.options.get("colorful", True)

        def styler(style):
            return styles[style] if colorful else ""

        def text(fragment, style=""):
            if not fragment:
                return Text("")
            if not colorful:
                return Text(str(fragment))
            if isinstance(fragment, Text):
                return fragment
            return Text(str(fragment), style)

        prog = getattr(main, "__prog__", self.options.get("prog") or "your-script")

        message = Text.assemble(text("Error:", styler("error-label")), " ", text(self.message, styler("error-message")))
        hint = text(f"Try '{prog}{"".join(f" {name}" for name in self.chain)} --help' for usage details.", styler("hint"))

        if self.options.get("fancy", False):
            header = Text.assemble("[ ", text(prog, styler("prog-name")), " — ", text(self.code.normalize() if self.code else "", styler("code")), " ]")
            return Panel(Group(message, hint), title=header, title_align="left")

        return Group(Text(""), message, Text(""), hint)

    def __trigger__(self) -> None:
        if not self.options.get("handle", False):
            raise self
        console.print(self)
        if self.options.get("exit", False):
            sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "unused arguments are not allowed"
        fault = type(self)(self.message, **{**self.options, **overrides})
        fault.__cause__ = self.__cause__
        return fault.with_traceback(self.__traceback__)


class StructuralError(CommandException):
    __code__ = FaultCode.INVALID_COMMAND

    def __trigger__(self) -> None:
        # structural faults are programming errors, never rendered away
        raise self


class DuplicateCommandError(StructuralError):
    __code__ = FaultCode.DUPLICATE_COMMAND

class InvalidCommandError(StructuralError):
    __code__ = FaultCode.INVALID_COMMAND

class DuplicateFlagError(StructuralError):
    __code__ = FaultCode.DUPLICATE_FLAG

class OptionCollisionError(StructuralError):
    __code__ = FaultCode.OPTION_COLLISION

class InvalidFlagError(StructuralError):
    __code__ = FaultCode.INVALID_FLAG


class ParseError(CommandException): ...

class UnknownCommandError(ParseError):
    __code__ = FaultCode.UNKNOWN_COMMAND

class CoercionError(ParseError):
    __code__ = FaultCode.COERCION_FAILED

class InvalidJsonError(CoercionError):
    __code__ = FaultCode.INVALID_JSON

class SchemaValidationError(CoercionError):
    __code__ = FaultCode.SCHEMA_VALIDATION

class InvalidChoiceError(ParseError):
    __code__ = FaultCode.INVALID_CHOICE

class ValidationFailedError(ParseError):
    __code__ = FaultCode.VALIDATION_FAILED

class MissingMandatoryError(ParseError):
    __code__ = FaultCode.MISSING_MANDATORY

    @property
    def missing(self):
        return tuple(self.options.get("missing", ()))

class EnvironmentFileError(ParseError):
    __code__ = FaultCode.ENVIRONMENT_FILE


class HandlerError(CommandException):
    __code__ = FaultCode.HANDLER_FAILED


class CommandWarning(Warning):
    __code__ = Unset

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(coalesce(message, ""))
        self.message = coalesce(message, "")
        self.options = MappingProxyType(options)

    def __str__(self):
        return self.message

    def __trigger__(self) -> None:
        warnings.warn(self, stacklevel=self.options.get("stacklevel", 2))

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class FlagOverwriteWarning(CommandWarning):
    __code__ = FaultCode.FLAG_OVERWRITE

class FlagCollisionWarning(CommandWarning):
    __code__ = FaultCode.FLAG_COLLISION


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods (see base classes).
    - options are merged into the fault via __replace__(**options) before triggering.
    - errors are raised unless options carry handle=True, in which case they are
      printed on stderr (and exit=True terminates the process).
    - warnings go through warnings.warn.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    copy.replace(fault, **options).__trigger__()


__all__ = (
    "CommandException",
    "StructuralError",
    "DuplicateCommandError",
    "InvalidCommandError",
    "DuplicateFlagError",
    "OptionCollisionError",
    "InvalidFlagError",
    "ParseError",
    "UnknownCommandError",
    "CoercionError",
    "InvalidJsonError",
    "SchemaValidationError",
    "InvalidChoiceError",
    "ValidationFailedError",
    "MissingMandatoryError",
    "EnvironmentFileError",
    "HandlerError",
    "CommandWarning",
    "FlagOverwriteWarning",
    "FlagCollisionWarning",
    "FaultCode",
    "trigger",
)
