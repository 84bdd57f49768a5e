from __future__ import annotations
import logging
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core.archive import merge_archives
from bulkcerts.core.models import ArtifactLocation
from bulkcerts.errors import NotFoundError, ValidationError
from bulkcerts.io.s3 import ArtifactStore, task_prefix
from bulkcerts.orch.aggregator import StatusAggregator

logger = logging.getLogger("bulkcerts.orch.assembler")

MODE_BUNDLE = "bundle"
MODE_LINKS = "links"


class ArtifactAssembler:
    """Signed links or a merged archive for completed tasks; task-wide deletion."""

    def __init__(
        self,
        cfg: BulkCertsConfig,
        aggregator: StatusAggregator,
        artifacts: ArtifactStore,
        work_dir: Optional[Path] = None,
    ):
        self.cfg = cfg
        self.aggregator = aggregator
        self.artifacts = artifacts
        self.work_dir = Path(work_dir) if work_dir else Path(tempfile.gettempdir())

    def get_artifacts(self, task_id: str, mode: str = MODE_BUNDLE):
        """
        Args:
            mode: "links" for presigned URLs, "bundle" for a merged zip on local disk

        Returns:
            List of URLs (links) or the merged archive Path (bundle)

        Raises:
            NotFoundError: unknown task or any chunk without a location yet
        """
        if mode not in (MODE_BUNDLE, MODE_LINKS):
            raise ValidationError(f"Unknown artifact mode '{mode}'")

        locations = self.aggregator.get_task_locations(task_id)
        if not locations:
            raise NotFoundError(f"Task {task_id} has no artifacts available")

        if mode == MODE_LINKS:
            return self.get_signed_urls(locations)
        return self.build_bundle(locations)

    def get_signed_urls(self, locations: List[str]) -> List[str]:
        return [
            self.artifacts.presign_get(ArtifactLocation.parse(loc), self.cfg.presigned_url_expiry_seconds)
            for loc in locations
        ]

    def build_bundle(self, locations: List[str]) -> Path:
        """
        Download every chunk archive and merge them.

        A missing object counts as an empty archive: it is skipped with a
        warning and the bundle is built from the rest.
        """
        def fetch_all():
            for loc in locations:
                data = self.artifacts.get_bytes(ArtifactLocation.parse(loc))
                if data is None:
                    logger.warning(f"Chunk archive missing, skipping: {loc}")
                yield data

        self.work_dir.mkdir(parents=True, exist_ok=True)
        dest = self.work_dir / f"{uuid.uuid4()}.zip"
        return merge_archives(fetch_all(), dest)

    def delete_batch(self, task_id: str) -> int:
        """
        Delete every artifact under the task prefix.

        Chunk records are left in place, so the task keeps reporting complete.

        Returns:
            Number of objects deleted
        """
        if not task_id:
            raise ValidationError("taskId must not be empty")
        if not self.cfg.s3_bucket:
            raise ValidationError("No artifact bucket configured (set BULKCERTS_S3_BUCKET)")

        prefix = task_prefix(self.cfg, task_id)
        keys = self.artifacts.list_keys(self.cfg.s3_bucket, prefix)
        if not keys:
            logger.info(f"No artifacts under s3://{self.cfg.s3_bucket}/{prefix}")
            return 0

        deleted = self.artifacts.delete_keys(self.cfg.s3_bucket, keys)
        logger.info(f"Deleted {deleted} artifact(s) of task {task_id}")
        return deleted
