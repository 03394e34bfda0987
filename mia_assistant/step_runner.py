from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger("mia.steps")

C = TypeVar("C")


@dataclass
class PipelineStep(Generic[C]):
    """One named stage of the chat pipeline."""
    name: str
    fn: Callable[[C], None]
    skip_if: Optional[Callable[[C], bool]] = None
    always_run: bool = False


@dataclass
class StepTrace:
    """Which steps ran (with their duration in ms) and which were skipped."""
    timings_ms: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def executed(self) -> List[str]:
        return list(self.timings_ms.keys())


class StepRunner(Generic[C]):
    """Runs PipelineSteps in order over a shared mutable context."""

    def __init__(self, steps: List[PipelineStep[C]]) -> None:
        self._steps = list(steps)

    def run(self, context: C) -> StepTrace:
        """Purpose: Execute the steps in declaration order.
        Inputs/Outputs: Input is the mutable pipeline context; output is a StepTrace.
        Side Effects / State: Step functions mutate the context.
        Dependencies: PipelineStep.skip_if / always_run.
        Failure Modes: A failing step is logged with its name and the exception
            propagates; later steps (always_run included) do not run.
        If Removed: The chat pipeline cannot run.
        Testing Notes: always_run steps ignore skip_if.
        """
        trace = StepTrace()
        for step in self._steps:
            if not step.always_run and step.skip_if is not None and step.skip_if(context):
                trace.skipped.append(step.name)
                continue
            started = time.monotonic()
            try:
                step.fn(context)
            except Exception:
                logger.error("step failed name=%s", step.name)
                raise
            trace.timings_ms[step.name] = int((time.monotonic() - started) * 1000)
        logger.debug("steps executed=%s skipped=%s", trace.executed, trace.skipped)
        return trace
