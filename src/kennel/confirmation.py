"""Confirmation gate before mutating remote state.

DESIGN PHILOSOPHY:
- Nothing is applied without an explicit "y" from the operator
- The prompt goes to stderr so stdout carries only the plan and results
- End of input counts as "no", so piping into update never applies by accident
- ``assume_yes`` is the only way around the prompt (CI, scripted runs)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from .planner import Plan

logger = logging.getLogger(__name__)

CONFIRMATION_PROMPT = "Execute Plan ? -  press 'y' to continue"
AFFIRMATIVE_ANSWERS = frozenset({"y", "yes"})


class ConfirmationStatus(str, Enum):
    """Outcome of asking for confirmation."""

    APPROVED = "approved"
    DECLINED = "declined"
    NOT_REQUIRED = "not_required"


class ConfirmationGate:
    """Asks the operator whether a plan may be applied."""

    def __init__(self, assume_yes: bool = False) -> None:
        """Initialize confirmation gate.

        Args:
            assume_yes: Approve every plan without prompting.
        """
        self._assume_yes = assume_yes

    def check(self, plan: Plan) -> ConfirmationStatus:
        """Decide whether ``plan`` may be executed.

        Returns:
            NOT_REQUIRED when the plan has nothing to apply, otherwise the
            operator's decision.
        """
        if not plan.mutating_actions:
            return ConfirmationStatus.NOT_REQUIRED

        if self._assume_yes:
            logger.info(
                "Plan approved without prompting",
                extra={"changes": len(plan.mutating_actions)},
            )
            return ConfirmationStatus.APPROVED

        try:
            answer = click.prompt(
                click.style(CONFIRMATION_PROMPT, fg="red"),
                default="",
                show_default=False,
                prompt_suffix=": ",
                err=True,
            )
        except click.Abort:
            # No input available
            return ConfirmationStatus.DECLINED

        if answer.strip().lower() in AFFIRMATIVE_ANSWERS:
            return ConfirmationStatus.APPROVED
        return ConfirmationStatus.DECLINED

    def confirm(self, plan: Plan) -> bool:
        """Return True only if the plan has changes and they were approved."""
        return self.check(plan) == ConfirmationStatus.APPROVED
