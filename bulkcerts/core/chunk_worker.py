from __future__ import annotations

import logging
import time
from typing import List, Tuple

from bulkcerts.config import BulkCertsConfig
from bulkcerts.core import crypto
from bulkcerts.core.archive import ChunkArchive
from bulkcerts.core.issuers import CertificateIssuer, resolve_issuer
from bulkcerts.core.models import ChunkRequest, ChunkResult
from bulkcerts.core.subjects import common_name_for, validate_cert_info
from bulkcerts.errors import TerminalTaskError
from bulkcerts.io.db import ChunkRecordStore
from bulkcerts.io.s3 import ArtifactStore, chunk_location

logger = logging.getLogger("bulkcerts.core.chunk_worker")


class ChunkWorker:
    """
    Produces one chunk: issue certificates, upload the archive, mark the
    chunk complete.

    No SQS here. Any exception aborts the chunk before anything is written;
    the caller decides about redelivery. Upload and record update are two
    steps: a failure between them leaves an uploaded archive and a chunk that
    still reads pending until the message is processed again.
    """

    def __init__(self, cfg: BulkCertsConfig, store: ChunkRecordStore, artifacts: ArtifactStore, iot, ssm):
        self.cfg = cfg
        self.store = store
        self.artifacts = artifacts
        self.iot = iot
        self.ssm = ssm

    def process(self, request: ChunkRequest) -> ChunkResult:
        start_time = time.time()
        validate_cert_info(request.cert_info, request.quantity)

        issuer = resolve_issuer(request.ca_alias, self.cfg, self.iot, self.ssm)
        data, certificate_ids = self.build_archive(request, issuer)

        location = chunk_location(self.cfg, request.task_id, request.chunk_id)
        self.artifacts.put_bytes(location, data)
        logger.debug(f"Uploaded {location.uri} ({len(data)} bytes)")

        if not self.store.mark_chunk_complete(request.task_id, request.chunk_id, location.uri):
            raise TerminalTaskError(f"Chunk {request.task_id}/{request.chunk_id} has no record")

        result = ChunkResult(
            task_id=request.task_id,
            chunk_id=request.chunk_id,
            location=location.uri,
            certificate_ids=certificate_ids,
            total_duration_ms=(time.time() - start_time) * 1000,
        )
        logger.info(f"Chunk {request.task_id}/{request.chunk_id} complete", extra=result.as_log_extra())
        return result

    def build_archive(self, request: ChunkRequest, issuer: CertificateIssuer) -> Tuple[bytes, List[str]]:
        """
        Issue `request.quantity` certificates one at a time into an in-memory zip.

        Returns:
            (zip bytes, certificate ids in issuance order)
        """
        archive = ChunkArchive()
        certificate_ids = []
        ca_pem = issuer.ca_certificate_pem if request.include_ca else None
        if ca_pem and not ca_pem.endswith("\n"):
            ca_pem += "\n"

        for i in range(request.quantity):
            common_name = common_name_for(request.cert_info, i)
            key = crypto.generate_private_key(self.cfg.key_size)
            csr = crypto.build_csr(key, crypto.build_subject(request.cert_info, common_name))
            certificate = issuer.issue(csr)
            certificate_id = crypto.fingerprint(certificate)

            certificate_pem = crypto.certificate_to_pem(certificate)
            if ca_pem:
                certificate_pem += ca_pem

            archive.add_certificate(certificate_id, certificate_pem, crypto.private_key_to_pem(key))
            if issuer.writes_manifest:
                archive.add_manifest_entry(common_name, certificate_id)
            certificate_ids.append(certificate_id)

        return archive.to_bytes(), certificate_ids
