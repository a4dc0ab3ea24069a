"""Backlog - groups ordered plan steps into labeled, risk-rated batches."""

from taskpilot.backlog.chunker import chunk_backlog, detect_phase, stable_hash
from taskpilot.backlog.models import Batch, Risk

__all__ = [
    "Batch",
    "Risk",
    "chunk_backlog",
    "detect_phase",
    "stable_hash",
]
