import zipfile

import pytest

from bulkcerts.core.archive import MANIFEST_NAME, ChunkArchive
from bulkcerts.core.models import ArtifactLocation, ChunkRecord, TaskStatus
from bulkcerts.errors import NotFoundError, ValidationError
from bulkcerts.io.s3 import chunk_location
from bulkcerts.orch.aggregator import StatusAggregator
from bulkcerts.orch.assembler import MODE_BUNDLE, MODE_LINKS, ArtifactAssembler

TASK_ID = "0b7d8e2e-8f20-11ee-b9d1-0242ac120002"


@pytest.fixture
def assembler(cfg, record_store, artifact_store, tmp_path):
    return ArtifactAssembler(cfg, StatusAggregator(record_store), artifact_store, work_dir=tmp_path)


def _complete_chunk(cfg, record_store, artifact_store, chunk_id, certificate_id, upload=True):
    location = chunk_location(cfg, TASK_ID, chunk_id)
    if upload:
        archive = ChunkArchive()
        archive.add_certificate(certificate_id, "cert", "key")
        archive.add_manifest_entry(f"dev-{chunk_id}", certificate_id)
        artifact_store.put_bytes(location, archive.to_bytes())
    record_store.save_chunk(ChunkRecord(
        task_id=TASK_ID,
        chunk_id=chunk_id,
        quantity=1,
        status=TaskStatus.COMPLETE,
        batch_date=1700000000000,
        location=location.uri,
    ))
    return location


def test_links_mode_presigns_every_chunk(cfg, assembler, record_store, artifact_store):
    for chunk_id in (1, 2):
        _complete_chunk(cfg, record_store, artifact_store, chunk_id, f"id{chunk_id}")

    urls = assembler.get_artifacts(TASK_ID, MODE_LINKS)

    assert urls == [
        f"https://unit-test-bucket.s3.amazonaws.com/certs/{TASK_ID}/1/certs.zip?X-Amz-Expires=900",
        f"https://unit-test-bucket.s3.amazonaws.com/certs/{TASK_ID}/2/certs.zip?X-Amz-Expires=900",
    ]


def test_bundle_mode_merges_chunks(cfg, assembler, record_store, artifact_store, tmp_path):
    for chunk_id in (1, 2):
        _complete_chunk(cfg, record_store, artifact_store, chunk_id, f"id{chunk_id}")

    path = assembler.get_artifacts(TASK_ID, MODE_BUNDLE)

    assert path.parent == tmp_path
    with zipfile.ZipFile(path) as zf:
        names = set(zf.namelist())
        assert {"certs/id1_cert.pem", "certs/id1_key.pem", "certs/id2_cert.pem", "certs/id2_key.pem"} <= names
        assert zf.read(MANIFEST_NAME).decode() == "name,certificateId\ndev-1,id1\ndev-2,id2\n"


def test_bundle_skips_missing_archive(cfg, assembler, record_store, artifact_store):
    _complete_chunk(cfg, record_store, artifact_store, 1, "id1")
    _complete_chunk(cfg, record_store, artifact_store, 2, "id2", upload=False)

    path = assembler.get_artifacts(TASK_ID, MODE_BUNDLE)

    with zipfile.ZipFile(path) as zf:
        assert "certs/id1_cert.pem" in zf.namelist()
        assert "certs/id2_cert.pem" not in zf.namelist()


def test_pending_task_has_no_artifacts(cfg, assembler, record_store, artifact_store):
    _complete_chunk(cfg, record_store, artifact_store, 1, "id1")
    record_store.save_chunk(ChunkRecord(
        task_id=TASK_ID, chunk_id=2, quantity=1, status=TaskStatus.PENDING, batch_date=1700000000000,
    ))

    with pytest.raises(NotFoundError):
        assembler.get_artifacts(TASK_ID, MODE_LINKS)


def test_unknown_mode(assembler):
    with pytest.raises(ValidationError):
        assembler.get_artifacts(TASK_ID, "tarball")


def test_delete_batch_removes_only_the_task(cfg, assembler, record_store, artifact_store):
    for chunk_id in (1, 2, 3):
        _complete_chunk(cfg, record_store, artifact_store, chunk_id, f"id{chunk_id}")
    other = ArtifactLocation(cfg.s3_bucket, f"certs/{TASK_ID}-other/1/certs.zip")
    artifact_store.put_bytes(other, b"zip")

    deleted = assembler.delete_batch(TASK_ID)

    assert deleted == 3
    assert artifact_store.list_keys(cfg.s3_bucket, f"certs/{TASK_ID}/") == []
    assert (other.bucket, other.key) in artifact_store.objects
    # records stay behind, the task still reads complete
    assert StatusAggregator(record_store).get_task(TASK_ID).status == TaskStatus.COMPLETE


def test_delete_batch_nothing_to_delete(assembler):
    assert assembler.delete_batch(TASK_ID) == 0
