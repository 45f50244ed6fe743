from .artifact import UploadArtifact
from .base import Action, ActionRegistry, ActionResult
from .checkout import Checkout
from .clippy import ClippyCheck
from .coverage import CodecovUpload, DocCoverage, Rename, Tarpaulin
from .toolchain import Toolchain

BUILTIN_ACTIONS = (
    Checkout,
    Toolchain,
    Tarpaulin,
    CodecovUpload,
    UploadArtifact,
    ClippyCheck,
    Rename,
    DocCoverage,
)


def default_registry() -> ActionRegistry:
    """Registry with the local stand-ins for every action the reference pipeline uses."""
    registry = ActionRegistry()
    for action_cls in BUILTIN_ACTIONS:
        registry.register(action_cls)
    return registry


__all__ = ["Action", "ActionRegistry", "ActionResult", "BUILTIN_ACTIONS", "default_registry"]
