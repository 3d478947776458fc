from rich.pretty import pprint

from wayfinder import *

root = Command(
    "tool",
    [
        Flag("verbose", "-v", "--verbose", switch=True, descr="chatty output"),
        Flag("token", "--token", env="TOOL_TOKEN", descr="API token"),
    ],
    command_name="tool",
    descr="Example application built on wayfinder.",
)


@root.command(
    flags=[
        Flag("target", "-t", "--target", choices=("dev", "prod"), mandatory=True),
        Flag("replicas", "-r", "--replicas", type="number", default=1),
    ],
    inherit=FlagInheritance.DIRECT_PARENT_ONLY,
)
def deploy(context):
    """Deploy the application."""
    pprint(context.args)


if __name__ == '__main__':
    invoke(root)
