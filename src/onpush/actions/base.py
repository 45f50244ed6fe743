# actions/base.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Type

from ..errors import CIError
from ..model import ActionRef, Artifact, Step

if TYPE_CHECKING:
    from ..context import JobContext


@dataclass
class ActionResult:
    """What an action reports back to the runner after a successful run."""
    exit_code: Optional[int] = 0
    output: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)
    artifacts: List[Artifact] = field(default_factory=list)


class Action:
    """
    A reusable step implementation referenced by `uses: owner/name@version`.

    Subclasses set `name` and implement `run`. A failing action raises
    StepFailure or CIError; returning means the step succeeded.
    """

    name: str = ""
    required: tuple[str, ...] = ()

    def __init__(self, ref: ActionRef):
        self.ref = ref

    @property
    def version(self) -> Optional[str]:
        return self.ref.version

    def run(self, ctx: JobContext, step: Step, with_: Mapping[str, str]) -> ActionResult:
        raise NotImplementedError

    def validate(self, ctx: JobContext, step: Step, with_: Mapping[str, str]) -> None:
        missing = [k for k in self.required if not with_.get(k)]
        if missing:
            raise CIError(
                kind="missing_input",
                job=ctx.job.name,
                step=step.name,
                message=f"{self.ref} requires input(s): {', '.join(missing)}",
                details={"action": str(self.ref)},
            )

    def __call__(self, ctx: JobContext, step: Step, with_: Mapping[str, str]) -> ActionResult:
        self.validate(ctx, step, with_)
        return self.run(ctx, step, with_)


def truthy(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


class ActionRegistry:
    """Maps action names (without version) to implementations."""

    def __init__(self) -> None:
        self._actions: Dict[str, Type[Action]] = {}

    def register(self, action_cls: Type[Action], name: Optional[str] = None) -> Type[Action]:
        key = name or action_cls.name
        if not key:
            raise ValueError(f"{action_cls.__name__} has no action name")
        self._actions[key] = action_cls
        return action_cls

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: str) -> bool:
        return ActionRef.parse(name).name in self._actions

    def resolve(self, uses: str, *, job: str = "", step: Optional[str] = None) -> Action:
        ref = ActionRef.parse(uses)
        action_cls = self._actions.get(ref.name)
        if action_cls is None:
            raise CIError(
                kind="unknown_action",
                job=job,
                step=step,
                message=f"No implementation registered for {ref}",
                details={"known_actions": ", ".join(self.names())},
            )
        return action_cls(ref)
