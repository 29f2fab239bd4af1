"""
Token usage and cost accounting.
"""

import json
import logging
import os
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .model_registry import ModelRegistry

logger = logging.getLogger(__name__)


USAGE_FILE = "usage.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class UsageRecord(BaseModel):
    """
    One completed call. Never mutated once recorded.

    cost_usd is filled in by the tracker from the pricing of the model
    recorded here, at the time of recording.
    """
    model_config = ConfigDict(frozen=True)

    command: str = ""
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    timestamp: str = Field(default_factory=_now)
    cost_usd: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def day(self) -> str:
        return self.timestamp[:10]


class UsageStats(BaseModel):
    """Aggregate over a set of usage records."""
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_cost_usd: float = 0.0
    requests: int = 0

    def add(self, record: UsageRecord) -> None:
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.total_tokens += record.total_tokens
        self.total_cost_usd += record.cost_usd or 0.0
        self.requests += 1


def aggregate(records: Iterable[UsageRecord]) -> UsageStats:
    stats = UsageStats()
    for record in records:
        stats.add(record)
    return stats


class CostTracker:
    """
    Append-only usage log with running totals.

    Records live in memory until flush() writes them to
    <data_dir>/usage.json; load() restores them.
    """

    def __init__(self, data_dir: str, registry: Optional[ModelRegistry] = None):
        self._data_dir = Path(data_dir)
        self._registry = registry or ModelRegistry()
        self._records: List[UsageRecord] = []
        self._totals = UsageStats()
        self._lock = threading.Lock()

    @property
    def usage_path(self) -> Path:
        return self._data_dir / USAGE_FILE

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self._registry.get_pricing(model)
        return (
            input_tokens * pricing.input_per_1m
            + output_tokens * pricing.output_per_1m
        ) / 1_000_000

    def record_usage(self, record: UsageRecord) -> UsageRecord:
        """Append a record; returns it with its cost filled in."""
        if record.cost_usd is None:
            record = record.model_copy(update={
                "cost_usd": self.calculate_cost(
                    record.model, record.input_tokens, record.output_tokens
                ),
            })
        with self._lock:
            self._records.append(record)
            self._totals.add(record)
        logger.debug(
            f"Recorded usage: {record.model} {record.total_tokens} tokens "
            f"${record.cost_usd:.6f}"
        )
        return record

    def get_stats(self) -> UsageStats:
        with self._lock:
            return self._totals.model_copy()

    def get_records(self) -> List[UsageRecord]:
        with self._lock:
            return list(self._records)

    def _matching(self, predicate: Callable[[UsageRecord], bool]) -> UsageStats:
        with self._lock:
            return aggregate(r for r in self._records if predicate(r))

    def get_usage_by_date(self, day: Union[str, date]) -> UsageStats:
        """Usage on one UTC day, given as a date or "YYYY-MM-DD"."""
        if isinstance(day, date):
            day = day.isoformat()
        return self._matching(lambda r: r.day == day)

    def get_usage_by_command(self, command: str) -> UsageStats:
        return self._matching(lambda r: r.command == command)

    def flush(self) -> None:
        """Persist every record to the usage file."""
        with self._lock:
            payload = {"records": [r.model_dump() for r in self._records]}

        self._data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.usage_path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.usage_path)
        logger.info(f"Flushed {len(payload['records'])} usage records to {self.usage_path}")

    def load(self) -> None:
        """Replace in-memory records with the persisted ones."""
        if not self.usage_path.exists():
            return

        try:
            with open(self.usage_path, "r") as f:
                data = json.load(f)
            records = [UsageRecord.model_validate(r) for r in data.get("records", [])]
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring corrupted usage file {self.usage_path}: {e}")
            return

        with self._lock:
            self._records = records
            self._totals = aggregate(records)
        logger.info(f"Loaded {len(records)} usage records from {self.usage_path}")
