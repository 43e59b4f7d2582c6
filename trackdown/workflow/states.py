"""Unified item lifecycle state machine using transitions library.

Nine states supersede the legacy status fields. Every legal move is an
explicit trigger; anything else is rejected. Some legal moves are marked
manual: they go through, but with a warning, and are never eligible for
automation.

Usage:
    from trackdown.workflow.states import transition_state, validate_transition

    result = validate_transition("ready_for_qa", "ready_for_deployment")
    outcome = transition_state(item, "ready_for_deployment", actor="alice")
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum

from transitions import Machine, MachineError

from trackdown.lib.errors import InvalidTransition
from trackdown.lib.timeutil import later_of, now_iso
from trackdown.store.models import Item, StateMetadata

logger = logging.getLogger(__name__)


class UnifiedState(Enum):
    """All valid unified states."""

    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"

    # Resolution workflow
    READY_FOR_ENGINEERING = "ready_for_engineering"
    READY_FOR_QA = "ready_for_qa"
    READY_FOR_DEPLOYMENT = "ready_for_deployment"
    WONT_DO = "won_t_do"
    DONE = "done"


STATES = [s.value for s in UnifiedState]

LEGACY_STATUSES = ("planning", "active", "completed", "archived")

RESOLUTION_STATES = (
    "ready_for_engineering",
    "ready_for_qa",
    "ready_for_deployment",
    "won_t_do",
    "done",
)

# Legacy status -> unified state. The first four are the epic/issue
# statuses; the rest cover flat task statuses and PR statuses.
LEGACY_TO_STATE = {
    "planning": "planning",
    "active": "active",
    "completed": "done",
    "archived": "archived",
    "todo": "planning",
    "in-progress": "active",
    "done": "done",
    "blocked": "active",
    "draft": "planning",
    "open": "active",
    "review": "active",
    "approved": "active",
    "merged": "done",
    "closed": "archived",
}

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the lifecycle model
TRANSITIONS = [
    # Legacy flow
    {"trigger": "start", "source": "planning", "dest": "active"},
    {"trigger": "complete", "source": "active", "dest": "completed"},
    {"trigger": "archive", "source": "completed", "dest": "archived"},

    # Resolution flow
    {"trigger": "ready_engineering", "source": "planning", "dest": "ready_for_engineering"},
    {"trigger": "ready_engineering", "source": "active", "dest": "ready_for_engineering"},
    {"trigger": "ready_qa", "source": "ready_for_engineering", "dest": "ready_for_qa"},
    {"trigger": "ready_qa", "source": "active", "dest": "ready_for_qa"},
    {"trigger": "ready_deployment", "source": "ready_for_qa", "dest": "ready_for_deployment"},
    {"trigger": "finish", "source": "ready_for_deployment", "dest": "done"},
    {"trigger": "finish", "source": "active", "dest": "done"},
    {"trigger": "finish", "source": "completed", "dest": "done"},
    {"trigger": "archive", "source": "done", "dest": "archived"},
    {"trigger": "archive", "source": "won_t_do", "dest": "archived"},

    # Rejection: any live state -> won_t_do
    {"trigger": "reject", "source": "planning", "dest": "won_t_do"},
    {"trigger": "reject", "source": "active", "dest": "won_t_do"},
    {"trigger": "reject", "source": "ready_for_engineering", "dest": "won_t_do"},
    {"trigger": "reject", "source": "ready_for_qa", "dest": "won_t_do"},
    {"trigger": "reject", "source": "ready_for_deployment", "dest": "won_t_do"},

    # Send back
    {"trigger": "send_back", "source": "ready_for_qa", "dest": "ready_for_engineering"},
    {"trigger": "send_back", "source": "ready_for_deployment", "dest": "ready_for_qa"},
    {"trigger": "reopen", "source": "ready_for_engineering", "dest": "active"},
    {"trigger": "reopen", "source": "ready_for_qa", "dest": "active"},
    {"trigger": "reopen", "source": "ready_for_deployment", "dest": "active"},
    {"trigger": "reopen", "source": "completed", "dest": "active"},
    {"trigger": "reopen", "source": "done", "dest": "active"},
    {"trigger": "reopen", "source": "archived", "dest": "active"},
    {"trigger": "replan", "source": "active", "dest": "planning"},
    {"trigger": "replan", "source": "ready_for_engineering", "dest": "planning"},
    {"trigger": "replan", "source": "won_t_do", "dest": "planning"},
]

# Legal but human-only moves: every rejection and every move backwards
MANUAL_TRANSITIONS = {
    (t["source"], t["dest"])
    for t in TRANSITIONS
    if t["trigger"] in ("reject", "send_back", "reopen", "replan")
}


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


@dataclass
class ValidationResult:
    """Outcome of validate_transition."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    allowed: list[str] = field(default_factory=list)


@dataclass
class TransitionResult:
    """Outcome of transition_state. On failure item is the original, unchanged."""
    item: Item
    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def parse_state(value: str | None) -> UnifiedState | None:
    """Parse a state string into UnifiedState, or None if unknown."""
    if value is None:
        return None
    for state in UnifiedState:
        if state.value == value:
            return state
    return None


def get_allowed_transitions(state: str) -> list[str]:
    """States reachable from state in one step, in table order."""
    return [dest for (source, dest) in TRIGGER_FOR if source == state]


def validate_transition(from_state: str, to_state: str) -> ValidationResult:
    """Check one move against the transition table."""
    allowed = get_allowed_transitions(from_state)
    result = ValidationResult(valid=True, allowed=allowed)

    if parse_state(from_state) is None:
        result.valid = False
        result.errors.append(f"Unknown state: {from_state}")
        return result
    if parse_state(to_state) is None:
        result.valid = False
        result.errors.append(f"Unknown state: {to_state}")
        return result
    if from_state == to_state:
        result.valid = False
        result.errors.append(f"Item is already in state {to_state}")
        return result
    if (from_state, to_state) not in TRIGGER_FOR:
        result.valid = False
        result.errors.append(f"Invalid transition from {from_state} to {to_state}")
        return result

    if (from_state, to_state) in MANUAL_TRANSITIONS:
        result.warnings.append(f"Manual transition from {from_state} to {to_state} requires human review")
    return result


def is_resolution_state(state: str) -> bool:
    return state in RESOLUTION_STATES


def is_legacy_status(status: str) -> bool:
    return status in LEGACY_STATUSES


def map_legacy_status(status: str) -> str | None:
    """Unified state for a legacy status, or None if unmapped."""
    return LEGACY_TO_STATE.get(status)


def get_effective_state(item: Item) -> str:
    """The item's unified state, falling back to its mapped legacy status.

    Always use this rather than reading status directly.
    """
    if item.state:
        return item.state
    legacy = item.status
    mapped = map_legacy_status(legacy)
    if mapped is None:
        logger.warning(f"[STATE] {item.id}: unknown legacy status '{legacy}', treating as planning")
        return "planning"
    return mapped


def create_state_metadata(
    transitioned_by: str,
    previous_state: str | None = None,
    automation_eligible: bool = False,
    automation_source: str | None = None,
    transition_reason: str | None = None,
    reviewer: str | None = None,
    transitioned_at: str | None = None,
) -> StateMetadata:
    """Build a StateMetadata stamped with the current time."""
    return StateMetadata(
        transitioned_at=transitioned_at or now_iso(),
        transitioned_by=transitioned_by,
        previous_state=previous_state,
        automation_eligible=automation_eligible,
        automation_source=automation_source,
        transition_reason=transition_reason,
        reviewer=reviewer,
    )


def validate_state_metadata(metadata: StateMetadata | None) -> list[str]:
    """Problems with a metadata record, empty if fine."""
    if metadata is None:
        return ["Missing state metadata"]
    errors = []
    if not metadata.transitioned_at:
        errors.append("transitioned_at is required")
    if not metadata.transitioned_by:
        errors.append("transitioned_by is required")
    if metadata.previous_state is not None and parse_state(metadata.previous_state) is None:
        errors.append(f"previous_state '{metadata.previous_state}' is not a valid state")
    return errors


class ItemLifecycle:
    """State machine bound to one item.

    Wraps the transitions library with item-specific logic:
    - Starts from the item's effective state
    - Records a new StateMetadata after each transition
    - Logs all transitions
    """

    def __init__(self, item: Item, actor: str, reason: str | None = None,
                 reviewer: str | None = None, automation_source: str | None = None):
        self.item = item
        self.actor = actor
        self.reason = reason
        self.reviewer = reviewer
        self.automation_source = automation_source
        self.metadata: StateMetadata | None = None

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=get_effective_state(item),
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition. Stamps metadata."""
        from_state = event.transition.source
        to_state = event.transition.dest

        previous_at = self.item.state_metadata.transitioned_at if self.item.state_metadata else None
        # transitioned_at never goes backwards, even if the clock does
        stamped_at = later_of(now_iso(), previous_at)

        self.metadata = create_state_metadata(
            transitioned_by=self.actor,
            previous_state=from_state,
            automation_eligible=(from_state, to_state) not in MANUAL_TRANSITIONS,
            automation_source=self.automation_source,
            transition_reason=self.reason,
            reviewer=self.reviewer,
            transitioned_at=stamped_at,
        )
        logger.info(f"[STATE] {self.item.id}: {from_state} -> {to_state} ({event.event.name}) by {self.actor}")

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)


def transition_state(item: Item, new_state: str, actor: str, reason: str | None = None,
                     reviewer: str | None = None, automation_source: str | None = None) -> TransitionResult:
    """Move an item to new_state if the table allows it.

    Returns a new Item on success; on failure the original item is returned
    unchanged with the validation errors. Never mutates the input.
    """
    current = get_effective_state(item)
    validation = validate_transition(current, new_state)
    if not validation.valid:
        logger.debug(f"[STATE] {item.id}: rejected {current} -> {new_state}: {validation.errors}")
        return TransitionResult(item=item, success=False, errors=validation.errors,
                                warnings=validation.warnings)

    lifecycle = ItemLifecycle(item, actor, reason, reviewer, automation_source)
    trigger = TRIGGER_FOR[(current, new_state)]
    try:
        getattr(lifecycle, trigger)()
    except MachineError as e:
        return TransitionResult(item=item, success=False, errors=[str(e)])

    metadata = lifecycle.metadata
    updated = dataclasses.replace(
        item,
        state=new_state,
        state_metadata=metadata,
        updated_date=later_of(metadata.transitioned_at, item.updated_date),
        tags=list(item.tags),
        extra=dict(item.extra),
    )
    return TransitionResult(item=updated, success=True, warnings=validation.warnings)


def require_transition(item: Item, new_state: str, actor: str, reason: str | None = None) -> Item:
    """transition_state that raises InvalidTransition instead of returning errors."""
    result = transition_state(item, new_state, actor, reason)
    if not result.success:
        raise InvalidTransition(get_effective_state(item), new_state,
                                get_allowed_transitions(get_effective_state(item)), item.id)
    return result.item


def get_available_transitions(item: Item) -> list[str]:
    return get_allowed_transitions(get_effective_state(item))


def can_automate(item: Item, to_state: str) -> bool:
    """True if the move is legal and needs no human sign-off."""
    validation = validate_transition(get_effective_state(item), to_state)
    return validation.valid and not validation.warnings
