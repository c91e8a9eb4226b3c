"""Tests for ContentAddressedStore — immutability, integrity, reclaiming."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipwright.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from shipwright.core.hasher import sha256_hex


def _write(tmp_dir: Path, name: str, data: bytes) -> Path:
    path = tmp_dir / name
    path.write_bytes(data)
    return path


class TestContentAddressedStore:
    def test_store_file_addresses_by_content(
        self, artifact_store: ContentAddressedStore, tmp_dir: Path
    ):
        data = b"PK\x03\x04 estore jar"
        ref = artifact_store.store_file(_write(tmp_dir, "estore.jar", data))
        assert ref.content_address == f"sha256:{sha256_hex(data)}"
        assert ref.size_bytes == len(data)
        assert ref.name == "estore.jar"
        assert artifact_store.path_for(ref.content_address).read_bytes() == data

    def test_idempotent_store(self, artifact_store: ContentAddressedStore, tmp_dir: Path):
        a1 = artifact_store.store_file(_write(tmp_dir, "a.jar", b"same"), name="first")
        a2 = artifact_store.store_file(_write(tmp_dir, "b.jar", b"same"), name="second")
        assert a1.content_address == a2.content_address
        assert len(artifact_store.list_artifacts()) == 1

    def test_exists(self, artifact_store: ContentAddressedStore, tmp_dir: Path):
        ref = artifact_store.store_file(_write(tmp_dir, "a.jar", b"exists"))
        assert artifact_store.exists(ref.content_address) is True
        assert artifact_store.exists("sha256:" + "0" * 64) is False

    def test_verify_detects_corruption(
        self, artifact_store: ContentAddressedStore, tmp_dir: Path
    ):
        ref = artifact_store.store_file(_write(tmp_dir, "a.jar", b"original"))
        assert artifact_store.verify(ref.content_address) is True
        artifact_store.path_for(ref.content_address).write_bytes(b"tampered")
        assert artifact_store.verify(ref.content_address) is False

    def test_restoring_over_corrupt_copy_raises(
        self, artifact_store: ContentAddressedStore, tmp_dir: Path
    ):
        source = _write(tmp_dir, "a.jar", b"original")
        ref = artifact_store.store_file(source)
        artifact_store.path_for(ref.content_address).write_bytes(b"tampered")
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.store_file(source)

    def test_path_for_missing(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.path_for("sha256:" + "0" * 64)

    def test_list_artifacts(self, artifact_store: ContentAddressedStore, tmp_dir: Path):
        r1 = artifact_store.store_file(_write(tmp_dir, "a.jar", b"one"))
        r2 = artifact_store.store_file(_write(tmp_dir, "b.jar", b"two"))
        listed = {r.content_address for r in artifact_store.list_artifacts()}
        assert listed == {r1.content_address, r2.content_address}

    def test_remove_reclaims_bytes(self, artifact_store: ContentAddressedStore, tmp_dir: Path):
        ref = artifact_store.store_file(_write(tmp_dir, "a.jar", b"12345"))
        assert artifact_store.remove(ref.content_address) == 5
        assert artifact_store.exists(ref.content_address) is False
        assert artifact_store.remove(ref.content_address) == 0
