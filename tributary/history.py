"""
history.py - Distribution Ledger: append-only record of executed runs

One JSON document per run, named distribution_<id>.json. Runs are written
once, at the end of execution, and never edited afterwards.
"""

from __future__ import annotations
from typing import List, Optional
import logging

from .core import (
    DataIntegrityError, DistributionRun, RUN_DOCUMENT_PREFIX, ResourceError, ValidationError,
)
from .storage import FileStorage


logger = logging.getLogger(__name__)


def run_document_name(run_id: str) -> str:
    return f"{RUN_DOCUMENT_PREFIX}{run_id}.json"


class DistributionLedger:
    """
    Persists and replays DistributionRuns.

    Example:
        ledger = DistributionLedger(FileStorage("./data"))
        ledger.save(run)
        for past in ledger.history(limit=5):
            print(past.id, past.successful_count, past.failed_count)
    """

    def __init__(self, storage: FileStorage):
        self.storage = storage

    def save(self, run: DistributionRun) -> None:
        """
        Write the run document.

        Raises:
            ResourceError: If the document cannot be written
        """
        self.storage.write_json(run_document_name(run.id), run.to_dict())
        logger.debug("Saved run %s", run.id)

    def _load(self, name: str) -> DistributionRun:
        data = self.storage.read_json(name)
        try:
            return DistributionRun.from_dict(data)
        except (KeyError, TypeError, ValueError, ArithmeticError, ValidationError) as e:
            raise DataIntegrityError(f"Malformed run document {name}: {e}", {'path': name}) from e

    def history(self, limit: Optional[int] = None) -> List[DistributionRun]:
        """
        Stored runs, newest first.

        Records that fail to parse are skipped with a warning.

        Raises:
            ValidationError: If limit is negative
        """
        if limit is not None and limit < 0:
            raise ValidationError(f"History limit cannot be negative: {limit}", {'limit': limit})
        runs: List[DistributionRun] = []
        for name in self.storage.list():
            if not (name.startswith(RUN_DOCUMENT_PREFIX) and name.endswith(".json")):
                continue
            try:
                runs.append(self._load(name))
            except (DataIntegrityError, ResourceError) as e:
                logger.warning("Skipping unreadable run record %s: %s", name, e)
        runs.sort(key=lambda r: r.created_at, reverse=True)
        if limit is not None:
            runs = runs[:limit]
        return runs

    def get(self, run_id: str) -> Optional[DistributionRun]:
        """The stored run with this id, or None when there is none."""
        name = run_document_name(run_id)
        if not self.storage.exists(name):
            return None
        return self._load(name)
