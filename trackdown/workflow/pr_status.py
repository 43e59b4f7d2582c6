"""Pull request status lifecycle using transitions library.

PR status is tracked separately from the unified state:

    draft -> open -> review -> approved -> merged
    draft, open, review, approved -> closed -> (draft | open)

merged is terminal.
"""

import dataclasses
import logging
from dataclasses import dataclass, field

from transitions import Machine, MachineError

from trackdown.lib.errors import ValidationError
from trackdown.lib.timeutil import now_iso
from trackdown.lib.types import ItemKind
from trackdown.store.models import Item

logger = logging.getLogger(__name__)

PR_STATES = ["draft", "open", "review", "approved", "merged", "closed"]

PR_TRANSITIONS = [
    {"trigger": "publish", "source": "draft", "dest": "open"},
    {"trigger": "close", "source": "draft", "dest": "closed"},

    {"trigger": "convert_to_draft", "source": "open", "dest": "draft"},
    {"trigger": "request_review", "source": "open", "dest": "review"},
    {"trigger": "approve", "source": "open", "dest": "approved"},
    {"trigger": "merge", "source": "open", "dest": "merged"},
    {"trigger": "close", "source": "open", "dest": "closed"},

    {"trigger": "request_changes", "source": "review", "dest": "open"},
    {"trigger": "approve", "source": "review", "dest": "approved"},
    {"trigger": "close", "source": "review", "dest": "closed"},

    {"trigger": "request_review", "source": "approved", "dest": "review"},
    {"trigger": "merge", "source": "approved", "dest": "merged"},
    {"trigger": "close", "source": "approved", "dest": "closed"},

    {"trigger": "convert_to_draft", "source": "closed", "dest": "draft"},
    {"trigger": "reopen", "source": "closed", "dest": "open"},
]

PR_TRIGGER_FOR = {(t["source"], t["dest"]): t["trigger"] for t in PR_TRANSITIONS}


@dataclass
class PRValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PRTransitionResult:
    item: Item
    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def get_allowed_pr_transitions(status: str) -> list[str]:
    return [dest for (source, dest) in PR_TRIGGER_FOR if source == status]


def validate_pr_transition(from_status: str, to_status: str) -> PRValidation:
    """Check a PR status change against the lifecycle."""
    if from_status not in PR_STATES or to_status not in PR_STATES:
        bad = from_status if from_status not in PR_STATES else to_status
        return PRValidation(valid=False, errors=[f"Unknown PR status: {bad}"])
    if from_status == to_status:
        return PRValidation(valid=False, errors=[f"PR is already {to_status}"])
    if (from_status, to_status) not in PR_TRIGGER_FOR:
        allowed = get_allowed_pr_transitions(from_status)
        return PRValidation(
            valid=False,
            errors=[
                f"Invalid PR status transition from {from_status} to {to_status}"
                + (f" (allowed: {', '.join(allowed)})" if allowed else f" ({from_status} is final)")
            ],
        )
    return PRValidation(valid=True)


def validate_merge(pr: Item, blocked_by: list[str] = None) -> PRValidation:
    """Check whether a PR may be merged now.

    Args:
        pr: The PR item
        blocked_by: Unmerged PRs it waits on (from the dependency store);
            defaults to the PR's own blocked_by field
    """
    result = PRValidation(valid=True)
    blockers = pr.blocked_by if blocked_by is None else blocked_by

    if pr.pr_status != "approved":
        result.errors.append(f"PR must be approved before merging (current status: {pr.pr_status})")
    if blockers:
        result.errors.append(f"PR is blocked by: {', '.join(blockers)}")
    if not pr.reviewers:
        result.warnings.append("PR has no reviewers assigned")
    if not pr.approvals:
        result.warnings.append("PR has no recorded approvals")

    result.valid = not result.errors
    return result


class PRLifecycle:
    """State machine bound to one PR item."""

    def __init__(self, pr: Item):
        self.pr = pr
        self.machine = Machine(
            model=self,
            states=PR_STATES,
            transitions=PR_TRANSITIONS,
            initial=pr.pr_status or "draft",
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        logger.info(
            f"[PR] {self.pr.id}: {event.transition.source} -> {event.transition.dest} ({event.event.name})"
        )


def transition_pr_status(pr: Item, new_status: str, actor: str,
                         blocked_by: list[str] = None) -> PRTransitionResult:
    """Change a PR's status if the lifecycle allows it.

    Moving to merged additionally runs validate_merge. Returns a new Item;
    the input is never mutated.
    """
    if pr.kind is not ItemKind.PR:
        raise ValidationError(f"{pr.id} is not a pull request", item_id=pr.id, field="kind")

    current = pr.pr_status or "draft"
    validation = validate_pr_transition(current, new_status)
    if validation.valid and new_status == "merged":
        merge_check = validate_merge(pr, blocked_by)
        validation.errors.extend(merge_check.errors)
        validation.warnings.extend(merge_check.warnings)
        validation.valid = not validation.errors
    if not validation.valid:
        return PRTransitionResult(item=pr, success=False, errors=validation.errors,
                                  warnings=validation.warnings)

    lifecycle = PRLifecycle(pr)
    try:
        getattr(lifecycle, PR_TRIGGER_FOR[(current, new_status)])()
    except MachineError as e:
        return PRTransitionResult(item=pr, success=False, errors=[str(e)])

    updated = dataclasses.replace(
        pr,
        pr_status=lifecycle.state,
        updated_date=now_iso(),
        tags=list(pr.tags),
        extra=dict(pr.extra),
    )
    if new_status == "approved" and actor not in updated.approvals:
        updated.approvals = [*pr.approvals, actor]
    return PRTransitionResult(item=updated, success=True, warnings=validation.warnings)
