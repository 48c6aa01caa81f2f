import zipfile

import pytest

from converter.archive import build_archive
from converter.artifacts import ArtifactStore
from converter.errors import ArchiveError, InputError


def _artifact(store, name, data=b"payload"):
    record = store.allocate(name, "webp")
    record.path.write_bytes(data)
    return record.filename


def test_empty_list_fails_without_creating_a_file(store):
    with pytest.raises(ArchiveError):
        build_archive([], store)
    assert list(store.entries()) == []


def test_single_entry_archive(store):
    name = _artifact(store, "photo.png", b"x" * 1000)
    path = build_archive([name], store)
    assert path.parent == store.root
    assert path.name.startswith("archive-") and path.suffix == ".zip"
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == [name]
        assert zf.read(name) == b"x" * 1000
        assert zf.getinfo(name).compress_type == zipfile.ZIP_DEFLATED


def test_missing_and_unsafe_names_are_skipped(store):
    name = _artifact(store, "photo.png")
    path = build_archive(["gone-123.webp", "../etc/passwd", name, name], store)
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == [name]


def test_nothing_available_fails_without_creating_a_file(store):
    with pytest.raises(ArchiveError):
        build_archive(["gone-123.webp"], store)
    assert list(store.entries()) == []


def test_archive_names_do_not_collide(store):
    name = _artifact(store, "photo.png")
    first = build_archive([name], store)
    second = build_archive([name], store)
    assert first != second


class ReapingStore(ArtifactStore):
    """Deletes a chosen artifact right after handing out its path."""

    def __init__(self, root, victim):
        super().__init__(root)
        self.victim = victim

    def resolve(self, filename):
        path = super().resolve(filename)
        if filename == self.victim:
            path.unlink()
        return path


def test_artifact_reaped_during_bundling_is_skipped(tmp_path):
    seed = ArtifactStore(tmp_path / "outputs")
    first = _artifact(seed, "a.png")
    second = _artifact(seed, "b.png")

    path = build_archive([first, second], ReapingStore(seed.root, victim=first))
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == [second]


def test_all_reaped_during_bundling_leaves_no_container(tmp_path):
    seed = ArtifactStore(tmp_path / "outputs")
    only = _artifact(seed, "a.png")
    with pytest.raises(ArchiveError):
        build_archive([only], ReapingStore(seed.root, victim=only))
    assert list(seed.entries()) == []


def test_symlink_out_of_the_store_is_not_bundled(store, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_text("do not ship")
    (store.root / "link-1-abc.webp").symlink_to(secret)
    with pytest.raises(InputError):
        store.resolve("link-1-abc.webp")
    with pytest.raises(ArchiveError):
        build_archive(["link-1-abc.webp"], store)
