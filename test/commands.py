"""
Commands module behavioral tests (tree building, parsing, faults, delegation).

Scope
- Validate tree composition: duplicates, cycles, re-attachment, non-commands.
- Validate policy propagation and flag inheritance snapshots (top-down and
  bottom-up attachment).
- Validate end-to-end parsing: flags per level, command chains, environment
  fallback and write-back, dynamic flags reset between parses.
- Validate fault handling: raised when handle_errors is off, rendered and
  returned (or exiting) otherwise.
- Validate handlers: decorator forms, parent values, pending tasks, invoke().

Conventions
- Test method names follow CamelCase per project convention.
- Commands use a dict-backed environment and auto_exit=False unless the exit
  itself is under test.
- Rendered output is captured by redirecting stdout/stderr.
"""

from __future__ import annotations

import contextlib
import io
import unittest
import warnings
from unittest import IsolatedAsyncioTestCase, TestCase

from wayfinder import Arguments, Command, Flag, FlagInheritance, ParseResult, command, invoke
from wayfinder.faults import (
    DuplicateCommandError,
    InvalidCommandError,
    UnknownCommandError,
    MissingMandatoryError,
    InvalidChoiceError,
    HandlerError,
    CoercionError,
    FlagOverwriteWarning,
)
from wayfinder.results import OutcomeKind


class TestCommandTree(TestCase):
    """Behavioral tests for command composition."""

    def testHelpFlagAddedByDefault(self):
        root = Command("tool", environ={})
        self.assertEqual(root.registry.options("help"), ("-h", "--help"))

    def testUserHelpFlagKept(self):
        root = Command("tool", [Flag("help", "--assist", switch=True)], environ={})
        self.assertEqual(root.registry.options("help"), ("--assist",))

    def testNameDefaultsToHandlerName(self):
        def deploy(context):
            """Deploy the application."""

        node = Command(handler=deploy)
        self.assertEqual(node.name, "deploy")
        self.assertEqual(node.descr, "Deploy the application.")

    def testInvalidNameRejected(self):
        with self.assertRaises(ValueError):
            Command("--tool")

    def testDuplicateSubcommandRaises(self):
        root = Command("tool", environ={})
        root.add_subcommand(Command("deploy"))
        with self.assertRaises(DuplicateCommandError) as context:
            root.add_subcommand(Command("deploy"))
        self.assertEqual(context.exception.message, "Sub-command 'deploy' already exists")

    def testNonCommandRejected(self):
        with self.assertRaises(InvalidCommandError):
            Command("tool").add_subcommand(object())

    def testReattachRejected(self):
        child = Command("deploy")
        Command("a").add_subcommand(child)
        with self.assertRaises(InvalidCommandError):
            Command("b").add_subcommand(child)

    def testCycleRejected(self):
        root = Command("tool")
        child = root.add_subcommand(Command("deploy"))
        with self.assertRaises(InvalidCommandError):
            child.add_subcommand(root)

    def testRenameOnAttach(self):
        root = Command("tool")
        child = root.add_subcommand(Command("deploy"), "ship")
        self.assertIs(root.get_child("ship"), child)
        self.assertEqual(child.chain, ("ship",))

    def testPolicyPropagation(self):
        root = Command("tool", command_name="tool", handle_errors=False, auto_exit=False, fancy=True)
        child = root.add_subcommand(Command("deploy", auto_exit=True, colorful=False))
        self.assertFalse(child.handle_errors)
        self.assertFalse(child.auto_exit)
        self.assertTrue(child.fancy)
        self.assertFalse(child.colorful)
        self.assertEqual(child.prog, "tool")

    def testPolicyCascadesIntoSubtree(self):
        leaf = Command("now")
        middle = Command("deploy")
        middle.add_subcommand(leaf)
        Command("tool", strict=True).add_subcommand(middle)
        self.assertTrue(leaf.strict)
        self.assertTrue(leaf.registry.strict)

    def testDirectParentSnapshot(self):
        root = Command("tool", [Flag("token", "--token")])
        child = root.add_subcommand(Command("deploy", inherit=FlagInheritance.DIRECT_PARENT_ONLY))
        root.add_flag(Flag("late", "--late"))
        self.assertTrue(child.has_flag("token"))
        self.assertFalse(child.has_flag("late"))

    def testAllParentsTopDown(self):
        root = Command("tool", [Flag("token", "--token")])
        middle = root.add_subcommand(Command("cloud", [Flag("region", "--region")]))
        leaf = middle.add_subcommand(Command("deploy", inherit=FlagInheritance.ALL_PARENTS))
        self.assertTrue(leaf.has_flag("token"))
        self.assertTrue(leaf.has_flag("region"))

    def testAllParentsBottomUpCascade(self):
        middle = Command("cloud", [Flag("region", "--region")])
        everything = middle.add_subcommand(Command("deploy", inherit=FlagInheritance.ALL_PARENTS))
        direct = middle.add_subcommand(Command("status", inherit=True))
        Command("tool", [Flag("token", "--token")]).add_subcommand(middle)
        self.assertTrue(everything.has_flag("token"))
        self.assertTrue(everything.has_flag("region"))
        self.assertTrue(direct.has_flag("region"))
        self.assertFalse(direct.has_flag("token"))

    def testInheritedFlagDoesNotOverrideOwn(self):
        root = Command("tool", [Flag("name", "--name", default="root")])
        child = root.add_subcommand(Command("deploy", [Flag("name", "--name", default="child")], inherit=True))
        self.assertEqual(child.get_flag("name").default, "child")

    def testCommandDecoratorForms(self):
        root = Command("tool")

        @root.command
        def status(context):
            pass

        @root.command("ship", inherit=True)
        def deploy(context):
            pass

        bare = root.command("db", handler=None)
        self.assertEqual(set(root.children), {"status", "ship", "db"})
        self.assertIs(root.get_child("ship"), deploy)
        self.assertIs(root.get_child("status"), status)
        self.assertEqual(deploy.handler.__name__, "deploy")
        self.assertIs(deploy.inherit, FlagInheritance.DIRECT_PARENT_ONLY)
        self.assertIsNone(bare.handler)

    def testAttachWithoutHandlerKeepsDescriptionEmpty(self):
        root = Command("tool", environ={})
        child = root.add_subcommand(Command("db"), handler=None)
        self.assertIsNone(child.handler)
        self.assertIsNone(child.descr)

        child.set_handler(None)
        self.assertIsNone(child.descr)

    def testModuleCommandFactory(self):
        @command(flags=[Flag("name", "--name")])
        def greet(context):
            pass

        self.assertIsInstance(greet, Command)
        self.assertTrue(greet.has_flag("name"))


class TestCommandParsing(IsolatedAsyncioTestCase):
    """Behavioral tests for Command.parse."""

    def setUp(self):
        self.environ = {}
        self.calls = []
        self.root = Command(
            "tool",
            [Flag("verbose", "-v", "--verbose", switch=True), Flag("token", "--token", env="TOOL_TOKEN")],
            handle_errors=False,
            auto_exit=False,
            environ=self.environ,
        )

        @self.root.command(flags=[
            Flag("target", "-t", "--target", choices=("dev", "prod"), mandatory=True),
            Flag("replicas", "-r", "--replicas", type=int, default=1),
        ])
        def deploy(context):
            self.calls.append(context)
            return {"deployed": context.args["target"]}

    async def testParseAcrossLevels(self):
        args = await self.root.parse("-v deploy --target prod -r 3")
        self.assertIsInstance(args, Arguments)
        self.assertEqual(args.chain, ("deploy",))
        self.assertIs(args["verbose"], True)
        self.assertEqual(args["target"], "prod")
        self.assertEqual(args["replicas"], 3)
        self.assertEqual(args["deployed"], "prod")

    async def testHandlerReceivesParentValues(self):
        await self.root.parse(["--token", "abc", "deploy", "-t", "dev"])
        context, = self.calls
        self.assertEqual(context.parent_args["token"], "abc")
        self.assertEqual(context.args["target"], "dev")
        self.assertIs(context.parent, self.root)
        self.assertEqual(context.chain, ("deploy",))

    async def testUnknownCommand(self):
        with self.assertRaises(UnknownCommandError) as context:
            await self.root.parse("deploy -t dev bogus")
        self.assertEqual(context.exception.message, "Unknown command: 'bogus'")
        self.assertEqual(context.exception.chain, ("deploy",))

    async def testParentFlagAfterChildIsUnknown(self):
        with self.assertRaises(UnknownCommandError):
            await self.root.parse("deploy -t dev --verbose")

    async def testMissingMandatory(self):
        with self.assertRaises(MissingMandatoryError) as context:
            await self.root.parse("deploy")
        self.assertEqual(context.exception.missing, ("target",))

    async def testInvalidChoice(self):
        with self.assertRaises(InvalidChoiceError):
            await self.root.parse("deploy -t staging")

    async def testDefaultsApplied(self):
        args = await self.root.parse("deploy -t dev")
        self.assertEqual(args["replicas"], 1)

    async def testEnvironmentFallbackAndWriteBack(self):
        self.environ["TOOL_TOKEN"] = "from-env"
        args = await self.root.parse("deploy -t dev")
        self.assertEqual(args["token"], "from-env")

        await self.root.parse("--token fresh deploy -t dev")
        self.assertEqual(self.environ["TOOL_TOKEN"], "fresh")

    async def testHandlerFailureRaised(self):
        def broken(context):
            raise RuntimeError("boom")

        self.root.get_child("deploy").handler = broken
        with self.assertRaises(HandlerError):
            await self.root.parse("deploy -t dev")

    async def testSkipHandlers(self):
        args = await self.root.parse("deploy -t dev", skip_handlers=True)
        self.assertEqual(self.calls, [])
        self.assertNotIn("deployed", args)

    async def testPendingHandler(self):
        async def later(context):
            return {"finished": True}

        self.root.get_child("deploy").handler = later
        args = await self.root.parse("deploy -t dev", wait=False)
        self.assertIsNotNone(args.pending)
        await args.settle()
        self.assertIs(args["finished"], True)

    async def testProtocolMarkerReachesHandler(self):
        await self.root.parse("deploy -t dev", protocol=True)
        self.assertTrue(self.calls[0].options.protocol)

    async def testDynamicFlagsResetBetweenParses(self):
        def plugins(context):
            return {"name": "extra", "options": ["--extra"]}

        self.root.add_flag(Flag("plugins", "--plugins", register=plugins))
        args = await self.root.parse("--plugins x --extra 1")
        self.assertEqual(args["extra"], "1")
        self.assertIn("extra", self.root.dynamic)

        with self.assertRaises(UnknownCommandError):
            await self.root.parse("--extra 1")
        self.assertFalse(self.root.has_flag("extra"))

    async def testDynamicFlagsStableAcrossRepeatedParses(self):
        def plugins(context):
            return {"name": "extra", "options": ["--extra"]}

        self.root.add_flag(Flag("plugins", "--plugins", register=plugins))
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            first = await self.root.parse("--plugins x --extra 1")
            self.assertEqual(self.root.dynamic, {"extra"})
            second = await self.root.parse("--plugins x --extra 1")
            self.assertEqual(self.root.dynamic, {"extra"})

        self.assertEqual(first, second)
        self.assertEqual(second["extra"], "1")
        self.assertFalse([warning for warning in caught if issubclass(warning.category, FlagOverwriteWarning)])

    async def testLookupParserFailureRaised(self):
        sizes = {"small": 1, "large": 3}
        self.root.get_child("deploy").add_flag(Flag("size", "--size", type=lambda value: sizes[value]))
        self.assertEqual((await self.root.parse("deploy -t dev --size large"))["size"], 3)
        with self.assertRaises(CoercionError):
            await self.root.parse("deploy -t dev --size huge")

    async def testLastOutcomeRecorded(self):
        args = await self.root.parse("deploy -t dev")
        self.assertIs(self.root.last, args)


class TestCommandFaultHandling(IsolatedAsyncioTestCase):
    """Behavioral tests for handled faults."""

    async def testHandledErrorRendered(self):
        root = Command("tool", command_name="tool", auto_exit=False, environ={})
        root.add_subcommand(Command("deploy"))
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            result = await root.parse("deploy bogus")
        self.assertIsInstance(result, ParseResult)
        self.assertFalse(result.success)
        self.assertEqual(result.code, 1)
        self.assertIs(result.kind, OutcomeKind.ERROR)
        self.assertEqual(result.message, "Unknown command: 'bogus'")
        self.assertIn("Unknown command: 'bogus'", stderr.getvalue())
        self.assertIn("tool deploy --help", stderr.getvalue())

    async def testHandledErrorExits(self):
        root = Command("tool", environ={})
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as context:
                await root.parse("bogus")
        self.assertEqual(context.exception.code, 1)


class TestInvoke(TestCase):
    """Behavioral tests for invoke()."""

    def testInvokeCommand(self):
        root = Command("tool", [Flag("name", "--name")], auto_exit=False, environ={})
        args = invoke(root, "--name 'two words'")
        self.assertEqual(args["name"], "two words")

    def testInvokeCallable(self):
        received = []

        def tool(context):
            received.append(context.chain)

        with contextlib.redirect_stderr(io.StringIO()):
            invoke(tool, [])
        self.assertEqual(received, [()])

    def testInvokeRejectsObjects(self):
        with self.assertRaises(TypeError):
            invoke(42)


if __name__ == '__main__':
    unittest.main()
