"""Transcript handling: fragment merge, derived aggregate, snapshot persistence."""
from .aggregate import recompute, verify
from .merger import MergeResult, merge
from .models import ChatMessage, Fragment, TranscriptAggregate, TranscriptSegment
from .writer import SnapshotWriterBase, create_snapshot_writer

__all__ = [
    "ChatMessage",
    "Fragment",
    "MergeResult",
    "SnapshotWriterBase",
    "TranscriptAggregate",
    "TranscriptSegment",
    "create_snapshot_writer",
    "merge",
    "recompute",
    "verify",
]
