from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from afip_enrollment.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class Download(Protocol):
    """The slice of playwright's Download the staging area needs."""

    @property
    def suggested_filename(self) -> str: ...

    def save_as(self, path: str | Path) -> None: ...


class StagingArea:
    """
    What it does:
    - Owns the file hand-off between the enrollment run and the portal's upload/download widgets.

    Why it matters:
    - The CSR and its private key are produced outside this service; the signed certificate
      comes back as a browser download. Both ends meet in two well-known directories.

    Behavior:
    - <root>/uploads/<csr_filename> must exist before the certificate stage.
    - <root>/uploads/*key* holds the private key for that CSR.
    - <root>/downloads is emptied before each run and receives the signed certificate.
    """

    def __init__(self, root: str | Path, *, csr_filename: str = "csr-creado.pem") -> None:
        self.root = Path(root)
        self.csr_filename = csr_filename

    @property
    def uploads_dir(self) -> Path:
        return self.root / "uploads"

    @property
    def downloads_dir(self) -> Path:
        return self.root / "downloads"

    @property
    def csr_path(self) -> Path:
        return self.uploads_dir / self.csr_filename

    def reset_downloads(self) -> None:
        if self.downloads_dir.exists():
            shutil.rmtree(self.downloads_dir)
            logger.info("Emptied download directory %s", self.downloads_dir)
        self.downloads_dir.mkdir(parents=True, exist_ok=True)

    def require_csr(self) -> Path:
        if not self.csr_path.is_file():
            raise NotFoundError(f"Certificate request not staged at {self.csr_path}")
        return self.csr_path

    def save_download(self, download: Download) -> Path:
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        target = self.downloads_dir / download.suggested_filename
        download.save_as(target)
        logger.info("Saved signed certificate download to %s", target)
        return target

    def read_signed_certificate(self) -> str:
        files = self._files(self.downloads_dir)
        if not files:
            raise NotFoundError(f"No signed certificate found in {self.downloads_dir}")
        if len(files) > 1:
            logger.warning("Found %d files in %s; using the newest", len(files), self.downloads_dir)
        newest = max(files, key=lambda p: p.stat().st_mtime)
        return newest.read_text(encoding="utf-8")

    def require_private_key(self) -> Path:
        keys = [p for p in self._files(self.uploads_dir) if "key" in p.name]
        if not keys:
            raise NotFoundError(f"No private key file found in {self.uploads_dir}")
        return keys[0]

    def read_private_key(self) -> str:
        return self.require_private_key().read_text(encoding="utf-8")

    @staticmethod
    def _files(directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file())
