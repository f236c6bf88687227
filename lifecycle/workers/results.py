"""Per-item outcomes and batch summaries returned by the lifecycle jobs."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class ItemOutcome:
    """Result of processing one batch item; errors never cross item boundaries."""

    item_id: str
    ok: bool
    error: str | None = None

    @classmethod
    def success(cls, item_id: Any) -> "ItemOutcome":
        return cls(item_id=str(item_id), ok=True)

    @classmethod
    def failure(cls, item_id: Any, error: str) -> "ItemOutcome":
        return cls(item_id=str(item_id), ok=False, error=error)


@dataclass
class BatchSummary:
    """Aggregated outcome of a batch run."""

    processed: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, outcome: ItemOutcome) -> None:
        if outcome.ok:
            self.processed += 1
        else:
            self.failed += 1
            self.errors.append(f"{outcome.item_id}: {outcome.error}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HorizonSummary:
    """Push reminder tally for one horizon (processed + error strings)."""

    processed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationSummary:
    expired_trials: int = 0
    synced: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def add(self, outcome: ItemOutcome) -> None:
        if outcome.ok:
            self.synced += 1
        else:
            self.failed += 1
            self.errors.append(f"Subscription {outcome.item_id}: {outcome.error}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
