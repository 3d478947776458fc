"""
Rich renderers: help screens, configuration dumps and the --s-debug simulation.

Palette keys (override any of them with a __styles__ mapping in __main__)
- usage-label, program-name, usage-section, description-section
- group-label, flag-name, metavar, choice, mandatory, flag-description, flag-detail
- children-title, children-table, children, children-description
- panel-title, tree-node, tree-flag, step-label, step-error
"""
import io
import json
import pathlib
from collections import defaultdict

from rich.box import ROUNDED
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from .utils import Unset

DEFAULT_DUMP = "wayfinder.full.json"


def _styler(colorful):
    styles = defaultdict(str, {
        # === Head sections ===
        "usage-label": "bold #00E6FF",
        "program-name": "bold #FF4D94",
        "usage-section": "bold #36C5F0",
        "description-section": "italic #A3A3A3",

        # === Flags ===
        "group-label": "bold #FFFFFF",
        "flag-name": "bold #22C55E",
        "metavar": "bold #FFD600",
        "choice": "bold #FF4D94",
        "mandatory": "bold #EF4444",
        "flag-description": "#9CA3AF",
        "flag-detail": "#737373",

        # === Children table ===
        "children-title": "bold #FFFFFF",
        "children-table": "#4B5563",
        "children": "bold #36C5F0",
        "children-description": "#9CA3AF",

        # === Panel / diagnostics ===
        "panel-title": "bold #FF4D94",
        "tree-node": "bold #36C5F0",
        "tree-flag": "#22C55E",
        "step-label": "bold #FFD600",
        "step-error": "bold #EF4444",
    } | getattr(__import__("__main__"), "__styles__", {}))

    def styler(style):
        return styles[style] if colorful else ""

    def text(fragment, style=""):
        if fragment is None or fragment == "":
            return Text("")
        if not colorful:
            return Text(str(fragment))
        if isinstance(fragment, Text):
            return fragment.copy()
        return Text(str(fragment), styler(style))

    return styler, text


def _metavar(flag, text):
    if flag.switch or flag.type is bool:
        return None
    if flag.choices:
        return Text.assemble("{", Text(",").join(text(choice, "choice") for choice in flag.choices), "}")
    if flag.metavar:
        return text(flag.metavar, "metavar")
    return Text.assemble("<", text(flag.typename, "metavar"), ">")


def _details(flag, node):
    details = []
    if flag.multiple:
        details.append("repeatable")
    if (default := flag.default) is not Unset:
        details.append(f"default: {json.dumps(default, default=str)}")
    if flag.env:
        details.append(f"env: {", ".join(flag.env)}")
    if flag.name in node.dynamic:
        details.append("dynamic")
    return details


def render_help(node, /, *, console=Unset):
    """
    Print the help screen of node: usage, description, sub-commands and flags.
    """
    console = Console() if console is Unset else console
    styler, text = _styler(node.colorful)
    width = console.width - 4 * node.fancy

    renders = []

    route = " ".join((node.prog, *node.chain))
    usage = Text()
    usage.append("usage", styler("usage-label")).append(": ")
    usage.append(text(route, "program-name"))
    usage.append(" ").append(text("[flags]", "usage-section"))
    if node.children:
        usage.append(" ").append(text("<command>", "usage-section"))
    renders.append(usage.append("\n"))

    if node.descr:
        renders.append(text(node.descr, "description-section").append("\n"))

    if node.children:
        table = Table(
            "name", "help",
            title=text("commands" if node.parent is None else "subcommands", "children-title"),
            width=int(width * (2 / 3)),
            box=ROUNDED,
            style=styler("children-table"),
            header_style=styler("children-title"),
        )
        for name, child in node.children.items():
            if child.descr:
                help = text(child.descr, "children-description")
            else:
                help = text(f"run '{" ".join((child.prog, *child.chain))} --help' for details", "children-description")
            table.add_row(text(name, "children"), help)
        renders.append(table)

    flags = Text("\n" if node.children else "")
    flags.append(text("flags", "group-label")).append(":\n")

    padding = 2
    indent = 28

    for flag in node.flags:
        shorts = sorted((option for option in flag.options if not option.startswith("--")), key=len)
        longs = sorted((option for option in flag.options if option.startswith("--")), key=len)
        section = Text(" " * padding)
        section.append(Text(", ").join(text(option, "flag-name") for option in (*shorts, *longs)))
        if (metavar := _metavar(flag, text)) is not None:
            section.append(" ").append(metavar)
        if flag.mandatory is True:
            section.append(" ").append(text("*", "mandatory"))
        elif callable(flag.mandatory):
            section.append(" ").append(text("(*)", "mandatory"))

        descr = text(flag.descr, "flag-description")
        if details := _details(flag, node):
            descr.append(" " if descr else "").append(text(f"[{"; ".join(details)}]", "flag-detail"))

        if descr:
            if len(section) >= indent:
                section.append("\n").append(" " * indent)
            else:
                section.append(" " * (indent - len(section)))
            wrapped = descr.wrap(console, max(width - indent, 20))
            section.append(wrapped[0])
            for line in wrapped[1:]:
                section.append("\n").append(" " * indent).append(line)

        flags.append(section).append("\n")

    flags.rstrip()
    renders.append(flags)

    renderable = Group(*renders)
    if node.fancy:
        renderable = Panel(
            renderable,
            title=Text.assemble("[ ", f"{route} help".upper(), " ]", style=styler("panel-title")),
            title_align="left",
        )
    console.print(renderable)


def describe(node, /):
    """
    JSON-ready description of node and its subtree.
    """
    return {
        "name": node.name,
        "descr": str(node.descr) if node.descr else None,
        "command_name": node.command_name,
        "inherit": str(node.inherit),
        "handler": getattr(node.handler, "__name__", None) if node.handler else None,
        "flags": [
            {
                "name": flag.name,
                "options": list(flag.options),
                "type": flag.typename,
                "mandatory": "conditional" if callable(flag.mandatory) else flag.mandatory,
                "dynamic": flag.name in node.dynamic,
                "default": None if flag.default is Unset else flag.default,
                "choices": list(flag.choices),
                "multiple": flag.multiple,
                "switch": flag.switch,
                "ligature": flag.ligature,
                "env": list(flag.env),
                "validate": bool(flag.validate),
                "descr": str(flag.descr) if flag.descr else None,
            }
            for flag in node.flags
        ],
        "children": {name: describe(child) for name, child in node.children.items()},
    }


def _tree(node, text):
    tree = Tree(text(node.name, "tree-node"))
    for flag in node.flags:
        label = Text.assemble(
            text(", ".join(flag.options), "tree-flag"),
            f" ({flag.typename}",
            ", mandatory" if flag.mandatory is True else ", conditional" if callable(flag.mandatory) else "",
            ", dynamic" if flag.name in node.dynamic else "",
            ")",
        )
        if flag.descr:
            label.append(f" {flag.descr}")
        tree.add(label)
    for child in node.children.values():
        tree.add(_tree(child, text))
    return tree


def dump(node, /, path=Unset, *, console=Unset):
    """
    Dump the configuration of node's subtree.

    A ".json" path receives the describe() tree, any other path a plain-text
    tree, and without a path the tree is printed on the console.
    """
    if path is Unset or path is None:
        console = Console() if console is Unset else console
        console.print(_tree(node, _styler(node.colorful)[1]))
        return None

    path = pathlib.Path(path)
    if path.suffix.lower() == ".json":
        path.write_text(json.dumps(describe(node), indent=2, default=str), encoding="utf-8")
    else:
        buffer = io.StringIO()
        Console(file=buffer, color_system=None, width=120).print(_tree(node, _styler(False)[1]))
        path.write_text(buffer.getvalue(), encoding="utf-8")
    return path


def render_simulation(node, steps, /, *, console=Unset):
    """
    Print the --s-debug step-by-step resolution of each command level.
    """
    console = Console() if console is Unset else console
    styler, text = _styler(node.colorful)

    renders = [text("--- runtime parsing simulation ---", "step-label")]
    for step in steps:
        section = Text()
        section.append(text(f"level: {step["level"]}", "step-label")).append("\n")
        section.append(f"  args: {json.dumps(step["tokens"])}\n")
        if step["error"] is not None:
            section.append(text(f"  error: {step["error"]}", "step-error")).append("\n")
        else:
            section.append(f"  parsed: {json.dumps(step["values"], default=str)}\n")
        section.append(f"  accumulated: {json.dumps(step["accumulated"], default=str)}\n")
        section.append(f"  remaining: {json.dumps(step["remaining"])}")
        renders.append(section)
    console.print(Group(*renders))


__all__ = (
    "render_help",
    "render_simulation",
    "describe",
    "dump",
    "DEFAULT_DUMP",
)
