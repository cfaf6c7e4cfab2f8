import logging
import os
from pathlib import Path

from PIL import Image

import folio.images as images
from folio.images import (
    collect_valid_hashes,
    compute_sizes,
    dedupe_references,
    needs_optimization,
    optimize_image,
    prune_orphans,
    read_image_width,
    run_optimize_images,
)
from folio.renderers import build_image_reference
from folio.utils import path_hash


def make_image(path, size=(1000, 500), mode="RGB"):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, "red").save(path)
    return Path(os.path.abspath(path))


def make_ref(content, relative, width=None):
    resolved = Path(os.path.abspath(content / relative))
    widths = {str(resolved): width} if width else {}
    return build_image_reference(relative, resolved, content, widths)


def test_compute_sizes_is_ascending_and_never_upscales():
    assert compute_sizes(1000) == [400, 800, 1000]
    assert compute_sizes(800) == [400, 800]
    assert compute_sizes(2000) == [400, 800, 1200, 2000]
    assert compute_sizes(300) == [300]
    assert compute_sizes(None) == [400, 800, 1200]


def test_read_image_width(tmp_path):
    path = make_image(tmp_path / "pic.png")
    assert read_image_width(path) == 1000
    (tmp_path / "bad.png").write_bytes(b"not an image")
    assert read_image_width(tmp_path / "bad.png") is None


def test_optimize_image_writes_every_variant(tmp_path):
    source = make_image(tmp_path / "content" / "pic.png", mode="RGBA")
    out = tmp_path / "out"
    written = optimize_image(source, out, [400, 1000])

    digest = path_hash(source)
    assert sorted(p.name for p in written) == sorted(
        [
            f"pic-400-{digest}.webp",
            f"pic-400-{digest}.jpg",
            f"pic-1000-{digest}.webp",
            f"pic-1000-{digest}.jpg",
        ]
    )
    with Image.open(out / f"pic-400-{digest}.jpg") as img:
        assert img.size == (400, 200)
        assert img.format == "JPEG"
    with Image.open(out / f"pic-1000-{digest}.webp") as img:
        assert img.width == 1000


def test_needs_optimization_tracks_source_mtime(tmp_path):
    content = tmp_path / "content"
    make_image(content / "posts" / "pic.png")
    ref = make_ref(content, "posts/pic.png", width=1000)
    cache = tmp_path / "cache"

    assert needs_optimization(ref, cache)
    result = run_optimize_images([ref], cache)
    assert result.processed == 1
    assert (cache / "posts" / ref.variant_name(800, "webp")).exists()
    assert not needs_optimization(ref, cache)

    newer = (cache / "posts" / ref.variant_name(1000, "jpg")).stat().st_mtime + 10
    os.utime(ref.resolved_path, (newer, newer))
    assert needs_optimization(ref, cache)


def test_rerun_with_unchanged_sources_encodes_nothing(tmp_path, monkeypatch):
    content = tmp_path / "content"
    make_image(content / "a.png")
    make_image(content / "b.png", size=(300, 300))
    refs = [make_ref(content, "a.png", 1000), make_ref(content, "b.png", 300)]
    cache = tmp_path / "cache"

    first = run_optimize_images(refs, cache)
    assert (first.processed, first.skipped, first.failed) == (2, 0, 0)

    calls = []
    monkeypatch.setattr(images, "optimize_image", lambda *args, **kwargs: calls.append(args))
    second = run_optimize_images(refs, cache)
    assert calls == []
    assert (second.processed, second.skipped, second.failed) == (0, 2, 0)


def test_duplicate_references_are_optimized_once(tmp_path, monkeypatch):
    content = tmp_path / "content"
    make_image(content / "pic.png")
    ref = make_ref(content, "pic.png", 1000)
    same = make_ref(content, "./pic.png", 1000)
    assert dedupe_references([ref, same]) == [ref]

    calls = []
    monkeypatch.setattr(images, "optimize_image", lambda path, *args: calls.append(path) or [])
    result = run_optimize_images([ref, same], tmp_path / "cache")
    assert result.processed == 1
    assert calls == [ref.resolved_path]


def test_failing_image_does_not_stop_batch(tmp_path, caplog):
    content = tmp_path / "content"
    make_image(content / "good.png")
    (content / "bad.png").write_bytes(b"not an image")
    refs = [make_ref(content, "bad.png"), make_ref(content, "good.png", 1000)]

    with caplog.at_level(logging.ERROR):
        result = run_optimize_images(refs, tmp_path / "cache")
    assert result.processed == 1
    assert result.failed == 1
    assert "Error optimizing" in caplog.text


def test_missing_sources_are_ignored(tmp_path):
    content = tmp_path / "content"
    content.mkdir()
    ref = make_ref(content, "missing.png")
    result = run_optimize_images([ref], tmp_path / "cache")
    assert (result.processed, result.skipped, result.failed) == (0, 0, 0)
    assert collect_valid_hashes([ref]) == set()


def test_prune_orphans_removes_only_unreferenced_variants(tmp_path):
    cache = tmp_path / "cache"
    (cache / "old").mkdir(parents=True)
    (cache / "pic-400-0123abcd.jpg").write_bytes(b"keep")
    (cache / "pic-400-0123abcd.webp").write_bytes(b"keep")
    (cache / "old" / "gone-800-deadbeef.webp").write_bytes(b"orphan")
    (cache / "notes.txt").write_text("not a variant", encoding="utf-8")

    removed = prune_orphans(cache, {"0123abcd"})
    assert removed == 1
    assert (cache / "pic-400-0123abcd.jpg").exists()
    assert (cache / "notes.txt").exists()
    assert not (cache / "old").exists()
    assert cache.exists()
    assert prune_orphans(tmp_path / "nowhere", set()) == 0
