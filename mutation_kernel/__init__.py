"""
Mutation Kernel
Deterministic, in-memory, event-driven editing kernel for attribute
mutations (mutaplasmids) and multi-unit quantity counters.
"""

from .domain_types import (
    AttributeRange, MutatedAttributeValue, MutationState, MutationConstants,
    CountPair, TransitionResult, EntityKind,
)
from .codec import (
    MutationValueError,
    FormatError,
    NumberError,
    to_multiplier,
    to_percentage,
    format_percentage,
    format_value,
    format_for_input,
)
from .validator import OutOfRangeError, Verdict, VerdictKind, validate
from .events import (
    EventType,
    BaseEvent,
    InitializeConstantsEvent,
    SelectMutationItemEvent,
    BeginEditingEvent,
    CommitEditingValueEvent,
    CancelEditingEvent,
    ClearMutationEvent,
    ReplaceItemEvent,
    reconstruct_event,
)
from .transitions import EditingMisuseError, UnknownAttributeError, NoActiveEditError
from .invariants import InvariantViolationError
from .engine import MutationEngine, new_engine
from .quantity import QuantitySynchronizer, TeardownReport
from .diagnostics import ValueQuality, describe_value, range_position, compute_diagnostics
from .hashing import canonical_serialize, canonical_hash
from .constants import (
    DEBOUNCE_DELAY_MS,
    QUANTITY_MIN,
    QUANTITY_MAX,
    MAX_ACTIVE_DRONES_ATTRIBUTE_ID,
    DEFAULT_MAX_ACTIVE,
    DISPLAY_FRACTION_DIGITS,
)

__all__ = [
    "AttributeRange",
    "MutatedAttributeValue",
    "MutationState",
    "MutationConstants",
    "CountPair",
    "TransitionResult",
    "EntityKind",
    "MutationValueError",
    "FormatError",
    "NumberError",
    "to_multiplier",
    "to_percentage",
    "format_percentage",
    "format_value",
    "format_for_input",
    "OutOfRangeError",
    "Verdict",
    "VerdictKind",
    "validate",
    "EventType",
    "BaseEvent",
    "InitializeConstantsEvent",
    "SelectMutationItemEvent",
    "BeginEditingEvent",
    "CommitEditingValueEvent",
    "CancelEditingEvent",
    "ClearMutationEvent",
    "ReplaceItemEvent",
    "reconstruct_event",
    "EditingMisuseError",
    "UnknownAttributeError",
    "NoActiveEditError",
    "InvariantViolationError",
    "MutationEngine",
    "new_engine",
    "QuantitySynchronizer",
    "TeardownReport",
    "ValueQuality",
    "describe_value",
    "range_position",
    "compute_diagnostics",
    "canonical_serialize",
    "canonical_hash",
    "DEBOUNCE_DELAY_MS",
    "QUANTITY_MIN",
    "QUANTITY_MAX",
    "MAX_ACTIVE_DRONES_ATTRIBUTE_ID",
    "DEFAULT_MAX_ACTIVE",
    "DISPLAY_FRACTION_DIGITS",
]
