# step_workflows/__init__.py
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping

from ..errors import ActionError

if TYPE_CHECKING:
    from ..model import JobContext, Step
    from ..runner import StepRunner

ActionHandler = Callable[["StepRunner", "JobContext", "Step", Dict[str, Any]], None]


def normalize_action_name(name: str) -> str:
    """`actions/checkout@v2` -> `actions/checkout`."""
    return name.split("@", 1)[0].strip().lower()


class ActionRegistry:
    """Maps `uses:` names to handlers. Version suffixes are ignored."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler, *names: str) -> None:
        for name in names:
            self._handlers[normalize_action_name(name)] = handler

    def resolve(self, name: str) -> ActionHandler:
        key = normalize_action_name(name)
        if key not in self._handlers:
            raise ActionError(f"unknown action {name!r}; known: {self.names()}")
        return self._handlers[key]

    def names(self) -> List[str]:
        return sorted(self._handlers)


# ---------------------------------------------------------------------
# option helpers shared by the built-in actions
# ---------------------------------------------------------------------

def option(options: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    """Case/underscore-insensitive lookup: FOLDER, folder and Folder all match."""
    wanted = {n.lower().replace("_", "-") for n in names}
    for k, v in options.items():
        if str(k).lower().replace("_", "-") in wanted:
            return v
    return default


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def as_list(value: Any) -> List[str]:
    """A YAML list, a JSON list in a string, or newline/comma separated text."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text = str(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ActionError(f"invalid JSON list: {text!r}") from e
        return [str(v) for v in parsed]
    parts = text.replace(",", "\n").splitlines()
    return [p.strip() for p in parts if p.strip()]


def default_registry() -> ActionRegistry:
    from .checkout import run_checkout
    from .caching import run_cache
    from .publish import run_deploy
    from .toolchain import run_toolchain

    registry = ActionRegistry()
    registry.register(run_checkout, "checkout", "actions/checkout")
    registry.register(run_cache, "cache", "actions/cache")
    registry.register(run_toolchain, "toolchain", "actions-rs/toolchain", "dtolnay/rust-toolchain")
    registry.register(run_deploy, "deploy", "JamesIves/github-pages-deploy-action")
    return registry
