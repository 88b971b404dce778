"""
Database handles for the scoring pipeline.

The source is read during ingress and the destination is written during
aggregation; both are scoped to their phase.
"""
from .dbm import DestinationSession, SourceSession, SqlDestination, SqlSource

__all__ = ["SqlSource", "SourceSession", "SqlDestination", "DestinationSession"]
