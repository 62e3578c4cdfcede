"""Idempotent operation steps.

An OperationStep pairs a read-only ``check`` predicate with an ``apply``
effect. ``ensure`` only applies when the check says the desired state is
absent, so running a step twice never mutates twice.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ztgw.core.context import ExecutionContext
from ztgw.core.runlog import EventType


class StepOutcome(Enum):
    SATISFIED = "satisfied"  # already in the desired state
    APPLIED = "applied"
    PLANNED = "planned"      # would apply (dry-run)


@dataclass(frozen=True)
class OperationStep:
    """One idempotent action."""
    description: str
    check: Callable[[], bool]
    apply: Callable[[], None]

    def is_satisfied(self) -> bool:
        return self.check()

    def ensure(self, ctx: ExecutionContext) -> StepOutcome:
        """Apply the step unless its check already holds."""
        if self.check():
            ctx.console.verbose(f"Already satisfied: {self.description}")
            ctx.run_log.info(EventType.STEP, self.description, outcome=StepOutcome.SATISFIED.value)
            return StepOutcome.SATISFIED

        ctx.console.step(self.description)
        self.apply()

        outcome = StepOutcome.PLANNED if ctx.dry_run else StepOutcome.APPLIED
        ctx.run_log.info(
            EventType.STEP,
            self.description,
            dry_run=ctx.dry_run,
            outcome=outcome.value,
        )
        return outcome
