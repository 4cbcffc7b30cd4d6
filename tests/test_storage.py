import pytest

from app.formhub.storage import LocalStorage, StorageError, storage_from_config


def test_local_put_open_delete(tmp_path):
    store = LocalStorage(tmp_path)
    store.put_bytes("templates/1/cover/abc-cover.png", b"img")

    assert store.exists("templates/1/cover/abc-cover.png")
    with store.open("templates/1/cover/abc-cover.png") as fh:
        assert fh.read() == b"img"
    # no temp files left beside the object
    assert [p.name for p in (tmp_path / "templates/1/cover").iterdir()] == ["abc-cover.png"]

    store.delete("templates/1/cover/abc-cover.png")
    assert not store.exists("templates/1/cover/abc-cover.png")
    store.delete("templates/1/cover/abc-cover.png")


def test_local_rejects_escaping_keys(tmp_path):
    store = LocalStorage(tmp_path / "root")
    for key in ("../outside.png", "templates/../../x", "", "a//b"):
        with pytest.raises(StorageError):
            store.put_bytes(key, b"x")


def test_local_open_missing(tmp_path):
    with pytest.raises(StorageError):
        LocalStorage(tmp_path).open("nope.png")


def test_storage_from_config(tmp_path):
    store = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_LOCAL_ROOT": str(tmp_path)})
    assert isinstance(store, LocalStorage)
    assert store.root == tmp_path.resolve()

    with pytest.raises(StorageError):
        storage_from_config({"STORAGE_BACKEND": "ftp"})
    with pytest.raises(StorageError):
        storage_from_config({"STORAGE_BACKEND": "s3", "S3_BUCKET": ""})
