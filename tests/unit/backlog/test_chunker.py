"""Unit tests for the backlog chunker."""

import pytest

from taskpilot.backlog import Batch, Risk, chunk_backlog, detect_phase, stable_hash


def _steps(count: int, prefix: str = "Implement feature") -> list[str]:
    return [f"{prefix} {i}" for i in range(count)]


@pytest.mark.unit
class TestStableHash:
    """Tests for stable_hash."""

    def test_same_input_same_hash(self) -> None:
        """Hash is deterministic."""
        assert stable_hash("abc") == stable_hash("abc")

    def test_fits_in_32_bits(self) -> None:
        """Hash is an unsigned 32-bit value."""
        value = stable_hash("x" * 500)
        assert 0 <= value <= 0xFFFFFFFF

    def test_empty_string(self) -> None:
        """Empty input returns the seed."""
        assert stable_hash("") == 5381


@pytest.mark.unit
class TestDetectPhase:
    """Tests for detect_phase."""

    def test_first_matching_phase_wins(self) -> None:
        """Setup is checked before Database."""
        assert detect_phase(["Setup database schema"]) == ("Setup", Risk.LOW)

    def test_auth_is_high_risk(self) -> None:
        """Auth keywords map to a high-risk phase."""
        assert detect_phase(["Add JWT refresh"]) == ("Auth", Risk.HIGH)

    def test_default_phase(self) -> None:
        """Unmatched steps fall back to Core."""
        assert detect_phase(["Write poems"]) == ("Core", Risk.MED)


@pytest.mark.unit
class TestChunkBacklog:
    """Tests for chunk_backlog."""

    def test_empty_backlog(self) -> None:
        """No steps means no batches."""
        assert chunk_backlog([]) == []

    def test_blank_steps_are_dropped(self) -> None:
        """Whitespace-only steps do not count."""
        batches = chunk_backlog(["  ", "Write poems", ""])
        assert len(batches) == 1
        assert batches[0].task_ids == ("Write poems",)

    def test_small_backlog_is_single_foundation_batch(self) -> None:
        """At most min_batch_size steps become one foundation batch."""
        batches = chunk_backlog(_steps(8))

        assert len(batches) == 1
        assert batches[0].title == "feat: Core foundation (batch 1/1)"
        assert len(batches[0].task_ids) == 8

    def test_large_backlog_is_split_evenly(self) -> None:
        """Steps are spread evenly across batches in order."""
        steps = _steps(25)
        batches = chunk_backlog(steps)

        assert [len(b.task_ids) for b in batches] == [9, 8, 8]
        flattened = [task for batch in batches for task in batch.task_ids]
        assert flattened == steps
        assert batches[1].title == "feat: Core (batch 2/3)"

    def test_sizes_respect_bounds(self) -> None:
        """Every batch of a large backlog stays within the bounds."""
        batches = chunk_backlog(_steps(47), min_batch_size=4, max_batch_size=6)

        assert all(4 <= len(b.task_ids) <= 6 for b in batches)
        assert sum(len(b.task_ids) for b in batches) == 47

    def test_output_is_deterministic(self) -> None:
        """Same input produces identical batches, including IDs."""
        assert chunk_backlog(_steps(30)) == chunk_backlog(_steps(30))

    def test_batch_ids_are_unique(self) -> None:
        """Identical groups in different positions get distinct IDs."""
        steps = ["Same step"] * 20
        batches = chunk_backlog(steps)
        assert len({b.id for b in batches}) == len(batches)

    def test_rationale_mentions_phase(self) -> None:
        """Rationale names the phase and the related task count."""
        batches = chunk_backlog(["Deploy docker image", "Tune production"])
        assert batches[0].risk == Risk.HIGH
        assert batches[0].rationale == "Deploy phase: Deploy docker image and 1 related tasks"

    def test_invalid_bounds_raise(self) -> None:
        """Inverted bounds raise ValueError."""
        with pytest.raises(ValueError, match="Invalid batch sizes"):
            chunk_backlog(_steps(3), min_batch_size=5, max_batch_size=2)


@pytest.mark.unit
class TestBatch:
    """Tests for the Batch model."""

    def test_empty_batch_rejected(self) -> None:
        """A batch must contain at least one task."""
        with pytest.raises(ValueError, match="at least one task"):
            Batch(id="b1", title="Empty", task_ids=())

    def test_list_task_ids_become_tuple(self) -> None:
        """Lists are normalized to tuples."""
        batch = Batch(id="b1", title="One", task_ids=["t1", "t2"])  # type: ignore[arg-type]
        assert batch.task_ids == ("t1", "t2")

    def test_dict_round_trip(self) -> None:
        """to_dict/from_dict preserve every field."""
        batch = Batch(id="b1", title="One", task_ids=("t1",), rationale="r", risk=Risk.HIGH)
        assert Batch.from_dict(batch.to_dict()) == batch
