"""
Tests for the internal helpers and the fault layer.

This module verifies:
- The Unset sentinel: singleton identity, falsiness, copy semantics, finality.
- coalesce(), rename() and mirror() contracts.
- settle() on plain values and awaitables.
- Fault rendering and trigger() policy (raise, print, exit, warn).
"""
import asyncio
import contextlib
import copy
import io
import unittest
import warnings
from unittest import TestCase

from wayfinder.faults import (
    FaultCode,
    InvalidCommandError,
    UnknownCommandError,
    FlagOverwriteWarning,
    trigger,
)
from wayfinder.utils import *


class UnsetTest(TestCase):
    """
    Test suite for the Unset sentinel.
    """

    def testSingleton(self):
        self.assertIs(UnsetType(), Unset)

    def testFalsy(self):
        self.assertFalse(Unset)
        self.assertIsNot(Unset, None)

    def testCopyKeepsIdentity(self):
        self.assertIs(copy.copy(Unset), Unset)
        self.assertIs(copy.deepcopy([Unset])[0], Unset)

    def testFinal(self):
        with self.assertRaises(TypeError):
            type("Subclass", (UnsetType,), {})


class HelpersTest(TestCase):
    def testCoalesce(self):
        self.assertEqual(coalesce(Unset, 1), 1)
        self.assertIsNone(coalesce(Unset))
        self.assertEqual(coalesce(0, 1), 0)

    def testRename(self):
        @rename("renamed")
        def function():
            pass

        self.assertEqual(function.__name__, "renamed")
        self.assertEqual(function.__qualname__, "renamed")

    def testMirrorCopiesContainers(self):
        class Holder:
            items = mirror("items")

            def __init__(self):
                self._items = ["a"]

        holder = Holder()
        self.assertEqual(holder.items, ("a",))
        self.assertIsNot(holder.items, holder._items)

    def testSettle(self):
        async def value():
            return 1

        self.assertEqual(asyncio.run(settle(value())), 1)
        self.assertEqual(asyncio.run(settle(2)), 2)


class FaultTest(TestCase):
    def testCodes(self):
        self.assertEqual(UnknownCommandError("x").code, FaultCode.UNKNOWN_COMMAND)

    def testTriggerRaisesByDefault(self):
        with self.assertRaises(UnknownCommandError):
            trigger(UnknownCommandError("Unknown command: 'x'"))

    def testTriggerHandledPrints(self):
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            trigger(UnknownCommandError("Unknown command: 'x'", chain=("deploy",)), handle=True, prog="tool")
        self.assertIn("Unknown command: 'x'", stderr.getvalue())
        self.assertIn("Try 'tool deploy --help' for usage details.", stderr.getvalue())

    def testTriggerHandledExits(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                trigger(UnknownCommandError("Unknown command: 'x'"), handle=True, exit=True)

    def testStructuralAlwaysRaises(self):
        with self.assertRaises(InvalidCommandError):
            trigger(InvalidCommandError("bad tree"), handle=True)

    def testWarningsGoThroughWarnings(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            trigger(FlagOverwriteWarning("flag 'x' is being overwritten"))
        self.assertEqual(len(caught), 1)
        self.assertIsInstance(caught[0].message, FlagOverwriteWarning)


if __name__ == '__main__':
    unittest.main()
