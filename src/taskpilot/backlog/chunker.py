"""Backlog Chunker - deterministic PR-sized batches from plan steps."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from taskpilot.backlog.models import Batch, Risk

logger = logging.getLogger(__name__)

DEFAULT_MIN_BATCH_SIZE = 8
DEFAULT_MAX_BATCH_SIZE = 12

# Checked in order; the first phase with a matching keyword wins
_PHASES: list[tuple[str, Risk, tuple[str, ...]]] = [
    ("Setup", Risk.LOW, ("init", "setup", "config", "install")),
    ("Database", Risk.MED, ("database", "schema", "migration", "model")),
    ("Auth", Risk.HIGH, ("auth", "login", "password", "jwt", "session")),
    ("API", Risk.MED, ("api", "endpoint", "route", "validation")),
    ("UI", Risk.LOW, ("frontend", "component", "ui", "form", "layout")),
    ("Testing", Risk.LOW, ("test", "e2e", "coverage", "integration")),
    ("Deploy", Risk.HIGH, ("deploy", "docker", "ci", "cd", "production", "cloud")),
]
_DEFAULT_PHASE = ("Core", Risk.MED)


def stable_hash(value: str) -> int:
    """32-bit djb2-xor hash, stable across processes (unlike hash())."""
    h = 5381
    for char in value:
        h = ((h * 33) ^ ord(char)) & 0xFFFFFFFF
    return h


def detect_phase(steps: Sequence[str]) -> tuple[str, Risk]:
    """Name the phase a group of steps belongs to and its risk."""
    text = " ".join(steps).lower()
    for name, risk, keywords in _PHASES:
        if any(keyword in text for keyword in keywords):
            return name, risk
    return _DEFAULT_PHASE


def _batch_id(steps: Sequence[str], index: int) -> str:
    content = "|".join(steps) + f"|batch{index}"
    return f"batch-{stable_hash(content):08x}"


def _rationale(steps: Sequence[str], phase: str) -> str:
    first = " ".join(steps[0].split(" ")[:3]) if steps else "tasks"
    return f"{phase} phase: {first} and {len(steps) - 1} related tasks"


def chunk_backlog(
    steps: Sequence[str],
    min_batch_size: int = DEFAULT_MIN_BATCH_SIZE,
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
) -> list[Batch]:
    """Split plan steps into evenly sized, ordered batches.

    Blank steps are dropped. A backlog no larger than min_batch_size becomes
    a single "foundation" batch. Otherwise the number of batches is chosen so
    the average size is the midpoint of the bounds, and steps are spread
    evenly across them in order. The output is fully deterministic.

    Args:
        steps: Plan steps (or task IDs) in execution order.
        min_batch_size: Lower size bound.
        max_batch_size: Upper size bound.

    Returns:
        Batches in execution order; empty when there are no steps.
    """
    if min_batch_size < 1 or max_batch_size < min_batch_size:
        raise ValueError(
            f"Invalid batch sizes: min={min_batch_size}, max={max_batch_size}"
        )

    clean = [step.strip() for step in steps if step.strip()]
    if not clean:
        return []

    if len(clean) <= min_batch_size:
        phase, risk = detect_phase(clean)
        return [
            Batch(
                id=_batch_id(clean, 0),
                title=f"feat: {phase} foundation (batch 1/1)",
                task_ids=tuple(clean),
                rationale=_rationale(clean, phase),
                risk=risk,
            )
        ]

    target_size = (min_batch_size + max_batch_size) // 2
    batch_count = math.ceil(len(clean) / target_size)

    batches: list[Batch] = []
    position = 0
    for i in range(batch_count):
        remaining = len(clean) - position
        size = math.ceil(remaining / (batch_count - i))
        group = clean[position : position + size]
        position += size
        if not group:
            continue

        phase, risk = detect_phase(group)
        batches.append(
            Batch(
                id=_batch_id(group, i),
                title=f"feat: {phase} (batch {i + 1}/{batch_count})",
                task_ids=tuple(group),
                rationale=_rationale(group, phase),
                risk=risk,
            )
        )

    logger.debug("Chunked %d steps into %d batches", len(clean), len(batches))
    return batches
