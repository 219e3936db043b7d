"""Synchronization of the checked-out tree into the live configuration."""

from .mapping import MappingKind, PathMapping, mappings_from_config
from .reconciler import MappingOutcome, ReconcileReport, Reconciler

__all__ = [
    "MappingKind",
    "MappingOutcome",
    "PathMapping",
    "ReconcileReport",
    "Reconciler",
    "mappings_from_config",
]
