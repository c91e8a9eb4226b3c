"""Content-addressed archive of built artifacts.

Files live at ``<root>/sha256/<first two hex chars>/<hex digest>``.  An
address, once written, always holds the same bytes; the only other write
is ``remove()``, which the Cleanup Agent uses to reclaim artifacts that no
retained image was built from.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from shipwright.core.hasher import sha256_file
from shipwright.models.artifacts import ArtifactRef

logger = logging.getLogger(__name__)

_PREFIX = "sha256:"


class ArtifactIntegrityError(RuntimeError):
    """Raised when archived bytes no longer hash to their address."""


class ContentAddressedStore:
    """Artifact archive keyed by SHA-256 digest.

    Archiving content that is already present does not copy it again.
    """

    def __init__(self, base_path: Path) -> None:
        self._root = Path(base_path) / "sha256"
        self._root.mkdir(parents=True, exist_ok=True)

    def _locate(self, content_address: str) -> Path:
        digest = content_address.removeprefix(_PREFIX)
        return self._root / digest[:2] / digest

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store_file(self, source: Path, *, name: str = "") -> ArtifactRef:
        """Archive *source* under its digest and return a reference to it.

        Raises ``ArtifactIntegrityError`` if a copy already archived under
        the same address has been altered on disk.
        """
        source = Path(source)
        address = _PREFIX + sha256_file(source)
        target = self._locate(address)

        if target.exists():
            if not self.verify(address):
                raise ArtifactIntegrityError(f"Archived copy of {address} is corrupt")
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, staging = tempfile.mkstemp(dir=target.parent, prefix=".incoming-")
            os.close(fd)
            try:
                shutil.copyfile(source, staging)
                os.replace(staging, target)
            except BaseException:
                Path(staging).unlink(missing_ok=True)
                raise
            logger.debug("Archived %s as %s", source.name, address)

        return ArtifactRef(
            name=name or source.name,
            content_address=address,
            size_bytes=target.stat().st_size,
        )

    def remove(self, content_address: str) -> int:
        """Delete an archived artifact; returns bytes reclaimed (0 if absent)."""
        target = self._locate(content_address)
        try:
            size = target.stat().st_size
            target.unlink()
        except FileNotFoundError:
            return 0
        logger.debug("Reclaimed %s (%d bytes)", content_address, size)
        return size

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def path_for(self, content_address: str) -> Path:
        target = self._locate(content_address)
        if not target.is_file():
            raise FileNotFoundError(f"No archived artifact {content_address}")
        return target

    def exists(self, content_address: str) -> bool:
        return self._locate(content_address).is_file()

    def verify(self, content_address: str) -> bool:
        """True when the archived bytes still hash to *content_address*."""
        target = self._locate(content_address)
        return target.is_file() and _PREFIX + sha256_file(target) == content_address

    def list_artifacts(self) -> list[ArtifactRef]:
        """Every archived artifact, sorted by address."""
        return [
            ArtifactRef(
                name=path.name[:16],
                content_address=_PREFIX + path.name,
                size_bytes=path.stat().st_size,
            )
            for path in sorted(self._root.glob("??/*"))
            if path.is_file() and not path.name.startswith(".")
        ]
