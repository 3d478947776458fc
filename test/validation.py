"""
Validation module behavioral tests (mandatory flags across a command path).

Scope
- Validate that every missing mandatory flag is reported at once.
- Validate conditional mandatory callables.
- Validate how inheritance moves the check to the deepest holder and drops
  the root when its child does not inherit.

Conventions
- Test method names follow CamelCase per project convention.
- Paths are built from real Command trees; validation is called directly.
"""

from __future__ import annotations

import unittest
from unittest import TestCase

from wayfinder import Command, Flag, FlagInheritance
from wayfinder.faults import MissingMandatoryError
from wayfinder.validation import MandatoryValidator


class TestMandatoryValidator(TestCase):
    """Behavioral tests for MandatoryValidator.validate."""

    def setUp(self):
        self.validator = MandatoryValidator()

    def testReportsEveryMissingFlag(self):
        root = Command("tool", [Flag("a", "-a", mandatory=True), Flag("b", "-b", mandatory=True)], environ={})
        with self.assertRaises(MissingMandatoryError) as context:
            self.validator.validate((root,), {})
        self.assertEqual(context.exception.message, "Missing mandatory flags: a, b")
        self.assertEqual(context.exception.missing, ("a", "b"))

    def testPresentFlagsPass(self):
        root = Command("tool", [Flag("a", "-a", mandatory=True)], environ={})
        self.validator.validate((root,), {"a": "x"})

    def testEmptyMultipleIsMissing(self):
        root = Command("tool", [Flag("tags", "--tag", mandatory=True, multiple=True)], environ={})
        with self.assertRaises(MissingMandatoryError):
            self.validator.validate((root,), {"tags": []})

    def testConditionalMandatory(self):
        flags = [
            Flag("mode", "--mode"),
            Flag("key", "--key", mandatory=lambda args: args.get("mode") == "secure"),
        ]
        root = Command("tool", flags, environ={})
        self.validator.validate((root,), {"mode": "plain"})
        with self.assertRaises(MissingMandatoryError) as context:
            self.validator.validate((root,), {"mode": "secure"})
        self.assertEqual(context.exception.missing, ("key",))

    def testRootDroppedWhenChildDoesNotInherit(self):
        root = Command("tool", [Flag("token", "--token", mandatory=True)], environ={})
        child = root.add_subcommand(Command("status"))
        self.validator.validate((root, child), {}, chain=("status",))

    def testRootCheckedWhenChildInherits(self):
        root = Command("tool", [Flag("token", "--token", mandatory=True)], environ={})
        child = root.add_subcommand(Command("deploy", inherit=FlagInheritance.DIRECT_PARENT_ONLY))
        with self.assertRaises(MissingMandatoryError) as context:
            self.validator.validate((root, child), {}, chain=("deploy",))
        self.assertEqual(context.exception.missing, ("token",))
        self.assertEqual(context.exception.chain, ("deploy",))


if __name__ == '__main__':
    unittest.main()
