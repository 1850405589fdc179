"""
Tests for the blob store.
"""

import pytest
import tempfile
import shutil
from pathlib import Path

from crepo import Repository
from crepo.db.models import BlobRecord
from crepo.exceptions import ItemNotFoundError
from crepo.services.blob_service import BlobService


@pytest.fixture
def temp_repo():
    temp_dir = tempfile.mkdtemp()
    repo = Repository.open(Path(temp_dir))
    repo.login()

    yield repo

    repo.close()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def blobs(temp_repo):
    return temp_repo.blobs


@pytest.fixture
def ws(temp_repo):
    return temp_repo.workspace_id


class TestPutAndGet:
    """Writing and reading payloads."""

    def test_put_and_get(self, temp_repo, blobs, ws):
        record = blobs.put("/n/data", ws, 0, b"hello")
        temp_repo.session.commit()

        assert record.length == 5
        assert record.content_hash == BlobRecord.compute_hash(b"hello")
        assert blobs.get("/n/data", ws) == b"hello"
        assert blobs.get_stream("/n/data", ws).read() == b"hello"

    def test_payload_file_is_hash_prefixed(self, temp_repo, blobs, ws):
        record = blobs.put("/n/data", ws, 0, b"hello")
        expected = blobs.blob_dir / record.content_hash[:2] / record.content_hash
        assert expected.read_bytes() == b"hello"

    def test_put_replaces_key(self, temp_repo, blobs, ws):
        blobs.put("/n/data", ws, 0, b"first")
        blobs.put("/n/data", ws, 0, b"second")
        temp_repo.session.commit()

        assert blobs.get("/n/data", ws) == b"second"
        assert temp_repo.session.query(BlobRecord).count() == 1

    def test_identical_payloads_share_a_file(self, temp_repo, blobs, ws):
        blobs.put("/a/data", ws, 0, b"same")
        blobs.put("/b/data", ws, 0, b"same")
        temp_repo.session.commit()

        assert len(list(blobs.blob_dir.glob("*/*"))) == 1

    def test_put_all_drops_stale_indexes(self, temp_repo, blobs, ws):
        blobs.put_all("/n/parts", ws, [b"a", b"b", b"c"])
        temp_repo.session.commit()
        blobs.put_all("/n/parts", ws, [b"x"])
        temp_repo.session.commit()

        assert blobs.get_all("/n/parts", ws) == [b"x"]

    def test_get_missing(self, blobs, ws):
        with pytest.raises(ItemNotFoundError):
            blobs.get("/nothing", ws)

    def test_workspaces_are_isolated(self, temp_repo, blobs, ws):
        temp_repo.create_workspace("other")
        other = temp_repo.workspaces.get_workspace_id("other")
        blobs.put("/n/data", ws, 0, b"default")
        temp_repo.session.commit()

        with pytest.raises(ItemNotFoundError):
            blobs.get("/n/data", other)


class TestSubtrees:
    """Keeping blob keys in step with tree operations."""

    def test_subtree_selection_is_segment_aware(self, temp_repo, blobs, ws):
        blobs.put("/a/data", ws, 0, b"1")
        blobs.put("/a/b/data", ws, 0, b"2")
        blobs.put("/ab/data", ws, 0, b"3")
        temp_repo.session.commit()

        assert blobs.delete_subtree("/a", ws) == 2
        temp_repo.session.commit()
        assert blobs.get("/ab/data", ws) == b"3"

    def test_copy_subtree_shares_payloads(self, temp_repo, blobs, ws):
        blobs.put("/a/data", ws, 0, b"1")
        temp_repo.session.commit()

        assert blobs.copy_subtree("/a", "/z", ws, ws) == 1
        temp_repo.session.commit()
        assert blobs.get("/z/data", ws) == b"1"
        assert blobs.get("/a/data", ws) == b"1"

    def test_move_subtree(self, temp_repo, blobs, ws):
        blobs.put("/a/b/data", ws, 0, b"1")
        temp_repo.session.commit()

        blobs.move_subtree("/a", "/m", ws)
        temp_repo.session.commit()
        assert blobs.get("/m/b/data", ws) == b"1"
        assert blobs.get_record("/a/b/data", ws) is None


class TestGarbageCollection:

    def test_unreferenced_payloads_removed(self, temp_repo, blobs, ws):
        blobs.put("/a/data", ws, 0, b"keep")
        blobs.put("/b/data", ws, 0, b"drop")
        temp_repo.session.commit()

        blobs.delete("/b/data", ws)
        temp_repo.session.commit()

        assert blobs.collect_garbage() == 1
        assert blobs.get("/a/data", ws) == b"keep"
        assert len(list(blobs.blob_dir.glob("*/*"))) == 1

    def test_shared_payload_kept_while_referenced(self, temp_repo, blobs, ws):
        blobs.put("/a/data", ws, 0, b"same")
        blobs.put("/b/data", ws, 0, b"same")
        temp_repo.session.commit()

        blobs.delete("/a/data", ws)
        temp_repo.session.commit()

        assert blobs.collect_garbage() == 0
        assert blobs.get("/b/data", ws) == b"same"


def test_service_creates_blob_directory(tmp_path, temp_repo):
    service = BlobService(tmp_path / "elsewhere", temp_repo.session)
    assert service.blob_dir.is_dir()
