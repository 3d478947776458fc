"""
Mandatory-flag validation across a resolved command path.

A flag is checked once, by the deepest node of the path that holds it: when the
next node inherits and also holds a flag, the check is left to that node. The
root is left out of the path when its immediate child does not inherit.
"""
import logging
from types import MappingProxyType

from .faults import MissingMandatoryError
from .flags import FlagInheritance

logger = logging.getLogger(__name__)


class MandatoryValidator:
    def validate(self, nodes, args, /, *, chain=()):
        """
        Raise one MissingMandatoryError naming every missing mandatory flag.
        """
        nodes = list(nodes)
        if len(nodes) > 1 and nodes[1].inherit is FlagInheritance.NONE:
            nodes = nodes[1:]

        missing = []
        view = MappingProxyType(args)
        for index, node in enumerate(nodes):
            following = nodes[index + 1] if index + 1 < len(nodes) else None
            for flag in node.registry:
                if flag.name == "help" or flag.name in missing:
                    continue
                if following is not None and following.inherit is not FlagInheritance.NONE and flag.name in following.registry:
                    continue
                mandatory = flag.mandatory(view) if callable(flag.mandatory) else flag.mandatory
                if mandatory and flag.absent(args):
                    missing.append(flag.name)

        if missing:
            logger.debug("missing mandatory flags on %s: %s", " ".join(chain) or "(root)", missing)
            raise MissingMandatoryError(f"Missing mandatory flags: {", ".join(missing)}", chain=chain, missing=missing)


__all__ = (
    "MandatoryValidator",
)
