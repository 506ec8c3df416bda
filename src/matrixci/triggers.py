# triggers.py
from __future__ import annotations

from typing import Optional

from .model import Event, PipelineDefinition, Trigger


def matching_trigger(pipeline: PipelineDefinition, event: Event) -> Optional[Trigger]:
    """
    Return the first trigger that starts a run for `event`, or None.

    Branch filters are exact names; no globbing.
    """
    for trigger in pipeline.triggers:
        if trigger.event != event.type:
            continue
        if trigger.branches is None or event.branch in trigger.branches:
            return trigger
    return None


def should_run(pipeline: PipelineDefinition, event: Event) -> bool:
    # A mismatch is a normal outcome, not an error.
    return matching_trigger(pipeline, event) is not None
