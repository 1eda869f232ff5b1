"""
Shared state machine plumbing for entity lifecycles.

Each workflow builds a StateMachine from a TransitionGraph plus its own guard and
effects functions. StateMachine.apply is pure: it never touches the database,
so services can call it first and persist only accepted results.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple
from uuid import UUID

from app.core.exceptions import TransitionError


INVALID_TRANSITION = "invalid_transition"
UNAUTHORIZED_ACTOR = "unauthorized_actor"
MISSING_REQUIRED_DOCUMENTS = "missing_required_documents"
PENDING_OVERRIDE_APPROVAL = "pending_override_approval"
MISSING_REQUIRED_FIELD = "missing_required_field"
INVALID_ENUM_VALUE = "invalid_enum_value"


@dataclass(frozen=True)
class Actor:
    """Who is asking. `actions` are the permission actions the caller holds on the workflow's resource."""

    user_id: UUID
    roles: FrozenSet[str] = frozenset()
    actions: FrozenSet[str] = frozenset()
    # True when the caller is the applicant / submitter of the record
    is_owner: bool = False

    def can(self, action: str) -> bool:
        return action in self.actions


@dataclass(frozen=True)
class TransitionResult:
    accepted: bool
    new_state: Optional[str] = None
    effects: Tuple[str, ...] = ()
    reason: Optional[str] = None
    message: Optional[str] = None
    field: Optional[str] = None

    @classmethod
    def accept(cls, new_state: str, effects: Iterable[str] = ()) -> "TransitionResult":
        return cls(accepted=True, new_state=new_state, effects=tuple(effects))

    @classmethod
    def reject(cls, reason: str, message: str, field: Optional[str] = None) -> "TransitionResult":
        return cls(accepted=False, reason=reason, message=message, field=field)

    def raise_for_rejection(self) -> None:
        if not self.accepted:
            raise TransitionError(self.reason or INVALID_TRANSITION, self.message or "Transition rejected", field=self.field)


@dataclass(frozen=True)
class TransitionGraph:
    """
    Declared edges. `escapes` are extra targets reachable from every non-terminal state
    (e.g. rejected / withdrawn).
    """

    edges: Mapping[str, FrozenSet[str]]
    terminal: FrozenSet[str]
    escapes: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        edges: Mapping[str, Iterable[str]],
        terminal: Iterable[str],
        escapes: Iterable[str] = (),
    ) -> "TransitionGraph":
        return cls(
            edges={src: frozenset(dst) for src, dst in edges.items()},
            terminal=frozenset(terminal),
            escapes=frozenset(escapes),
        )

    @property
    def states(self) -> FrozenSet[str]:
        known = set(self.edges) | set(self.terminal) | set(self.escapes)
        for targets in self.edges.values():
            known |= targets
        return frozenset(known)

    def allowed_transitions(self, state: str) -> FrozenSet[str]:
        if state in self.terminal:
            return frozenset()
        return self.edges.get(state, frozenset()) | (self.escapes - {state})

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal


Payload = Mapping[str, Any]
Guard = Callable[[str, str, Actor, Payload], Optional[TransitionResult]]
Effects = Callable[[str, str, Actor, Payload], Iterable[str]]


class StateMachine:
    """Graph + guard + effects. Guards return a rejected TransitionResult or None."""

    def __init__(
        self,
        name: str,
        graph: TransitionGraph,
        guard: Optional[Guard] = None,
        effects: Optional[Effects] = None,
    ) -> None:
        self.name = name
        self.graph = graph
        self._guard = guard
        self._effects = effects

    def allowed_transitions(self, state: str) -> FrozenSet[str]:
        return self.graph.allowed_transitions(state)

    def is_terminal(self, state: str) -> bool:
        return self.graph.is_terminal(state)

    def is_edge(self, current: str, requested: str) -> bool:
        return requested in self.allowed_transitions(current)

    def apply(
        self,
        current: str,
        requested: str,
        actor: Actor,
        payload: Optional[Payload] = None,
    ) -> TransitionResult:
        payload = payload or {}
        if requested not in self.graph.states:
            return TransitionResult.reject(
                INVALID_ENUM_VALUE,
                f"Unknown {self.name} status '{requested}'",
                field="status",
            )
        if not self.is_edge(current, requested):
            return TransitionResult.reject(
                INVALID_TRANSITION,
                f"Cannot move {self.name} from '{current}' to '{requested}'",
            )
        if self._guard is not None:
            rejected = self._guard(current, requested, actor, payload)
            if rejected is not None:
                return rejected
        effects = self._effects(current, requested, actor, payload) if self._effects else ()
        return TransitionResult.accept(requested, effects)


def require_fields(payload: Payload, *names: str) -> Optional[TransitionResult]:
    """Reject when any named payload value is missing or blank."""
    for name in names:
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return TransitionResult.reject(MISSING_REQUIRED_FIELD, f"'{name}' is required for this transition", field=name)
    return None


def unauthorized(message: str) -> TransitionResult:
    return TransitionResult.reject(UNAUTHORIZED_ACTOR, message)


def describe(machine: StateMachine) -> Dict[str, list]:
    """State -> sorted allowed targets, for API clients rendering the workflow."""
    return {state: sorted(machine.allowed_transitions(state)) for state in sorted(machine.graph.states)}
