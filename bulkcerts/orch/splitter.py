from __future__ import annotations
import logging
import time
import uuid
from dataclasses import dataclass
from typing import List

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core.models import CertificateInfo, ChunkRecord, ChunkRequest, TaskStatus
from bulkcerts.core.subjects import chunk_cert_info, validate_cert_info
from bulkcerts.errors import NotFoundError, ValidationError
from bulkcerts.io.db import ChunkRecordStore
from bulkcerts.io.sqs import SQSClient

logger = logging.getLogger("bulkcerts.orch.splitter")


@dataclass(frozen=True)
class ChunkPlan:
    chunk_id: int   # 1-based
    quantity: int
    offset: int     # index of the chunk's first certificate within the task


def plan_chunks(quantity: int, chunk_size: int) -> List[ChunkPlan]:
    """
    Partition `quantity` into ceil(quantity / chunk_size) chunks.

    Every chunk gets chunk_size certificates except the last, which gets the
    remainder when the division is uneven.
    """
    if chunk_size <= 0:
        raise ValidationError(f"chunk_size must be > 0, got {chunk_size}")
    if quantity <= 0:
        raise ValidationError(f"quantity must be > 0, got {quantity}")

    quotient, remainder = divmod(quantity, chunk_size)
    number_of_chunks = quotient + 1 if remainder else quotient

    plans = []
    for chunk_id in range(1, number_of_chunks + 1):
        chunk_quantity = chunk_size
        if chunk_id == number_of_chunks and remainder:
            chunk_quantity = remainder
        plans.append(ChunkPlan(chunk_id=chunk_id, quantity=chunk_quantity, offset=(chunk_id - 1) * chunk_size))
    return plans


class TaskSplitter:
    """
    Accepts bulk requests: writes one pending record per chunk, then publishes
    one work message per chunk.

    The two steps are not atomic. A crash between them leaves a pending chunk
    without a message; replay_pending() is the repair path.
    """

    def __init__(self, cfg: BulkCertsConfig, store: ChunkRecordStore, sqs: SQSClient):
        self.cfg = cfg
        self.store = store
        self.sqs = sqs

    def create_task(
        self,
        quantity: int,
        ca_alias: str,
        cert_info: CertificateInfo,
        include_ca: bool = False,
    ) -> str:
        """
        Split a bulk request into chunks and fan them out.

        Returns:
            The new task id

        Raises:
            ValidationError: bad quantity, CA alias or subject template (before any write)
            UpstreamError: store or queue failure part-way through
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"quantity must be a positive integer, got {quantity!r}")
        if not ca_alias:
            raise ValidationError("caAlias must not be empty")
        if self.cfg.supplier_root_cas and ca_alias not in self.cfg.supplier_root_cas:
            raise ValidationError(f"Unknown CA alias '{ca_alias}'")
        if not self.cfg.queue_url:
            raise ValidationError("No work queue configured (set BULKCERTS_QUEUE_URL)")
        validate_cert_info(cert_info, quantity)

        plans = plan_chunks(quantity, self.cfg.chunk_size)
        task_id = str(uuid.uuid1())
        batch_date = int(time.time() * 1000)
        logger.info(
            f"Creating task {task_id}: {quantity} certificates in {len(plans)} chunks",
            extra={"task_id": task_id, "quantity": quantity, "chunks_total": len(plans), "ca_alias": ca_alias},
        )

        for plan in plans:
            request = ChunkRequest(
                task_id=task_id,
                chunk_id=plan.chunk_id,
                quantity=plan.quantity,
                ca_alias=ca_alias,
                cert_info=chunk_cert_info(cert_info, plan.offset, plan.quantity),
                include_ca=include_ca,
            )
            self.store.save_chunk(ChunkRecord(
                task_id=task_id,
                chunk_id=plan.chunk_id,
                quantity=plan.quantity,
                status=TaskStatus.PENDING,
                batch_date=batch_date,
                request_body=request.to_json(),
            ))
            self.sqs.send_chunk_request(self.cfg.queue_url, request)
            logger.debug(f"Enqueued chunk {task_id}/{plan.chunk_id} (quantity={plan.quantity})")

        return task_id

    def replay_pending(self, task_id: str) -> int:
        """
        Republish the work message of every chunk still pending.

        Workers are idempotent per chunk, so replaying a chunk that is merely
        slow is harmless.

        Returns:
            Number of chunks republished
        """
        if not self.cfg.queue_url:
            raise ValidationError("No work queue configured (set BULKCERTS_QUEUE_URL)")

        chunks = self.store.list_chunks(task_id)
        if not chunks:
            raise NotFoundError(f"Task {task_id} not found")

        count = 0
        for chunk in chunks:
            if chunk.status == TaskStatus.COMPLETE:
                continue
            if not chunk.request_body:
                logger.warning(f"Chunk {task_id}/{chunk.chunk_id} has no stored request, cannot replay")
                continue
            request = ChunkRequest.from_json(chunk.request_body)
            self.sqs.send_chunk_request(self.cfg.queue_url, request)
            count += 1

        logger.info(f"Replayed {count} pending chunk(s) of task {task_id}")
        return count
