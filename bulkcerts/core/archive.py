from __future__ import annotations

import csv
import io
import logging
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger("bulkcerts.core.archive")

CERTS_FOLDER = "certs/"
MANIFEST_NAME = "manifest.csv"
MANIFEST_HEADER = ("name", "certificateId")


class ChunkArchive:
    """
    In-memory zip of one chunk's certificates.

    Layout:
        certs/{id}_cert.pem
        certs/{id}_key.pem
        manifest.csv          (customer CA only)
    """

    def __init__(self):
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, mode="w", compression=zipfile.ZIP_DEFLATED)
        self._manifest: List[Tuple[str, str]] = []
        self._closed = False

    def add_certificate(self, certificate_id: str, certificate_pem: str, private_key_pem: str) -> None:
        self._zip.writestr(f"{CERTS_FOLDER}{certificate_id}_cert.pem", certificate_pem)
        self._zip.writestr(f"{CERTS_FOLDER}{certificate_id}_key.pem", private_key_pem)

    def add_manifest_entry(self, name: str, certificate_id: str) -> None:
        self._manifest.append((name, certificate_id))

    def to_bytes(self) -> bytes:
        if not self._closed:
            if self._manifest:
                self._zip.writestr(MANIFEST_NAME, _manifest_csv(self._manifest))
            self._zip.close()
            self._closed = True
        return self._buffer.getvalue()


def merge_archives(archives: Iterable[Optional[bytes]], dest_path: Path) -> Path:
    """
    Merge chunk archives into one zip at dest_path.

    None entries (missing objects) contribute nothing. Manifests are
    concatenated under a single header; on duplicate entry names the last
    archive wins.
    """
    manifest_rows: List[Tuple[str, str]] = []
    entries = {}

    for index, data in enumerate(archives):
        if data is None:
            continue
        with zipfile.ZipFile(io.BytesIO(data)) as src:
            for name in src.namelist():
                if name.endswith("/"):
                    continue
                if name == MANIFEST_NAME:
                    manifest_rows.extend(_read_manifest(src.read(name)))
                    continue
                entries[name] = src.read(name)
        logger.debug(f"Merged archive #{index}")

    dest_path = Path(dest_path)
    with zipfile.ZipFile(dest_path, mode="w", compression=zipfile.ZIP_DEFLATED) as out:
        for name, content in entries.items():
            out.writestr(name, content)
        if manifest_rows:
            out.writestr(MANIFEST_NAME, _manifest_csv(manifest_rows))

    logger.info(f"Wrote merged archive {dest_path} ({len(entries)} files)")
    return dest_path


def _manifest_csv(rows: List[Tuple[str, str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(MANIFEST_HEADER)
    writer.writerows(rows)
    return buf.getvalue()


def _read_manifest(content: bytes) -> List[Tuple[str, str]]:
    reader = csv.reader(io.StringIO(content.decode("utf-8")))
    rows = [tuple(row) for row in reader if row]
    if rows and rows[0] == MANIFEST_HEADER:
        rows = rows[1:]
    return [(row[0], row[1]) for row in rows if len(row) >= 2]
