"""
Mutation Runtime — editing surface around the Mutation Kernel.

Debounced input validation, quantity counters, sqlite persistence and
the collaborator interfaces (metadata provider, fitting pipeline).
"""

from .event_repository import EventRepository, SequenceConflictError
from .debounce import CancellationToken, DebounceController, PublishedVerdict
from .interfaces import (
    FittingPipeline,
    MetadataProvider,
    MutationItemNotApplicableError,
    RecordingPipeline,
    StaticMetadataProvider,
    UnknownMutationItemError,
)
from .session import MutationEditingSession, DeterminismError, StreamCorruptedError
from .observability import SessionMetrics, collect_metrics

__all__ = [
    "EventRepository",
    "SequenceConflictError",
    "CancellationToken",
    "DebounceController",
    "PublishedVerdict",
    "FittingPipeline",
    "MetadataProvider",
    "MutationItemNotApplicableError",
    "RecordingPipeline",
    "StaticMetadataProvider",
    "UnknownMutationItemError",
    "MutationEditingSession",
    "DeterminismError",
    "StreamCorruptedError",
    "SessionMetrics",
    "collect_metrics",
]
