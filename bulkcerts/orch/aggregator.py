from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from bulkcerts.core.models import ChunkRecord, TaskStatus, TaskSummary
from bulkcerts.errors import NotFoundError, ValidationError
from bulkcerts.io.db import ChunkRecordStore

logger = logging.getLogger("bulkcerts.orch.aggregator")


def summarize_chunks(task_id: str, chunks: Sequence[ChunkRecord]) -> Optional[TaskSummary]:
    """
    Reduce chunk records to a task status. Order independent.

    Returns:
        None when there are no records
    """
    if not chunks:
        return None

    chunks_total = len(chunks)
    chunks_pending = sum(1 for c in chunks if c.status != TaskStatus.COMPLETE)

    return TaskSummary(
        task_id=task_id,
        batch_date=chunks[0].batch_date,
        status=TaskStatus.PENDING if chunks_pending else TaskStatus.COMPLETE,
        chunks_pending=chunks_pending,
        chunks_total=chunks_total,
    )


class StatusAggregator:
    """Read-then-reduce over chunk records; no caching, so two calls may differ."""

    def __init__(self, store: ChunkRecordStore):
        self.store = store

    def get_task(self, task_id: str) -> TaskSummary:
        """
        Raises:
            NotFoundError: If no chunk records exist for the task
        """
        if not task_id:
            raise ValidationError("taskId must not be empty")

        summary = summarize_chunks(task_id, self.store.list_chunks(task_id))
        if summary is None:
            raise NotFoundError(f"Task {task_id} not found")

        logger.debug(f"Task {task_id}: {summary.status} ({summary.chunks_pending}/{summary.chunks_total} pending)")
        return summary

    def get_task_locations(self, task_id: str) -> Optional[List[str]]:
        """
        Artifact locations of all chunks, in chunk order.

        Returns:
            None while any chunk is pending (no partial answers)

        Raises:
            NotFoundError: If no chunk records exist for the task
        """
        if not task_id:
            raise ValidationError("taskId must not be empty")

        chunks = self.store.list_chunks(task_id)
        if not chunks:
            raise NotFoundError(f"Task {task_id} not found")

        locations = []
        for chunk in sorted(chunks, key=lambda c: c.chunk_id):
            if chunk.status != TaskStatus.COMPLETE or not chunk.location:
                return None
            locations.append(chunk.location)
        return locations
