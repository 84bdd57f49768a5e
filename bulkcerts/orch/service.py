from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core.models import CertificateInfo, TaskStatus
from bulkcerts.io.db import ChunkRecordStore, DBClient
from bulkcerts.io.s3 import ArtifactStore
from bulkcerts.io.sqs import SQSClient
from bulkcerts.orch.aggregator import StatusAggregator
from bulkcerts.orch.assembler import MODE_BUNDLE, MODE_LINKS, ArtifactAssembler
from bulkcerts.orch.splitter import TaskSplitter

logger = logging.getLogger("bulkcerts.orch.service")

STATUS_PATH = "/certificates/{task_id}/task"

RETRIEVAL_REDIRECT = "redirect"
RETRIEVAL_BUNDLE = "bundle"
RETRIEVAL_LINKS = "links"


def status_path(task_id: str) -> str:
    return STATUS_PATH.format(task_id=task_id)


@dataclass(frozen=True)
class TaskAccepted:
    """A bulk request was split and queued (HTTP: 202 + Location)."""
    task_id: str
    location: str

    def to_dict(self) -> Dict[str, Any]:
        return {"taskId": self.task_id, "status": TaskStatus.IN_PROGRESS}


@dataclass(frozen=True)
class ArtifactRetrieval:
    """
    Outcome of an artifact request.

    redirect: task still pending, go poll `redirect_to` (HTTP 303)
    bundle:   merged zip at `bundle_path` (HTTP 200, application/zip)
    links:    presigned `urls`, one per chunk (HTTP 200)
    """
    kind: str
    task_id: str
    redirect_to: Optional[str] = None
    bundle_path: Optional[Path] = None
    urls: List[str] = field(default_factory=list)


class BulkCertificatesService:
    """Request/response operations of the bulk certificates API."""

    def __init__(
        self,
        splitter: TaskSplitter,
        aggregator: StatusAggregator,
        assembler: ArtifactAssembler,
        store: Optional[ChunkRecordStore] = None,
    ):
        self.splitter = splitter
        self.aggregator = aggregator
        self.assembler = assembler
        self._store = store

    @classmethod
    def from_config(cls, cfg: BulkCertsConfig, work_dir: Optional[Path] = None) -> "BulkCertificatesService":
        store = ChunkRecordStore(DBClient(cfg.db_dsn))
        sqs = SQSClient(cfg.aws_region)
        artifacts = ArtifactStore(cfg.aws_region)
        aggregator = StatusAggregator(store)
        return cls(
            splitter=TaskSplitter(cfg, store, sqs),
            aggregator=aggregator,
            assembler=ArtifactAssembler(cfg, aggregator, artifacts, work_dir=work_dir),
            store=store,
        )

    def create_task(
        self,
        quantity: int,
        ca_alias: str,
        cert_info: CertificateInfo,
        include_ca: bool = False,
    ) -> TaskAccepted:
        task_id = self.splitter.create_task(quantity, ca_alias, cert_info, include_ca=include_ca)
        return TaskAccepted(task_id=task_id, location=status_path(task_id))

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        return self.aggregator.get_task(task_id).to_dict()

    def retrieve_artifacts(self, task_id: str, as_links: bool = False) -> ArtifactRetrieval:
        """
        Never returns partial content: pending tasks are redirected to their
        status resource.

        Raises:
            NotFoundError: unknown task
        """
        summary = self.aggregator.get_task(task_id)
        if summary.status != TaskStatus.COMPLETE:
            logger.info(f"Task {task_id} still pending ({summary.chunks_pending}/{summary.chunks_total}), redirecting")
            return ArtifactRetrieval(kind=RETRIEVAL_REDIRECT, task_id=task_id, redirect_to=status_path(task_id))

        if as_links:
            urls = self.assembler.get_artifacts(task_id, MODE_LINKS)
            return ArtifactRetrieval(kind=RETRIEVAL_LINKS, task_id=task_id, urls=urls)

        path = self.assembler.get_artifacts(task_id, MODE_BUNDLE)
        return ArtifactRetrieval(kind=RETRIEVAL_BUNDLE, task_id=task_id, bundle_path=path)

    def delete_task_artifacts(self, task_id: str) -> int:
        return self.assembler.delete_batch(task_id)

    def replay_pending(self, task_id: str) -> int:
        return self.splitter.replay_pending(task_id)

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
