from __future__ import annotations

from pathlib import Path

from media_pipeline.jobs.models import MediaStatus
from tests._helpers.app import add_item, make_client


def test_partial_range(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        r = c.get(f"/media/{item.id}", headers={"Range": "bytes=100-199"})
        assert r.status_code == 206
        assert r.headers["content-range"] == "bytes 100-199/1000"
        assert r.headers["content-length"] == "100"
        assert r.headers["accept-ranges"] == "bytes"
        assert r.headers["content-type"].startswith("video/mp4")
        assert r.content == bytes(i % 256 for i in range(100, 200))


def test_open_ended_and_clamped_ranges(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        r = c.get(f"/media/{item.id}", headers={"Range": "bytes=990-"})
        assert r.status_code == 206
        assert r.headers["content-range"] == "bytes 990-999/1000"
        assert len(r.content) == 10

        r = c.get(f"/media/{item.id}", headers={"Range": "bytes=900-5000"})
        assert r.status_code == 206
        assert r.headers["content-range"] == "bytes 900-999/1000"


def test_unsatisfiable_ranges(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        for rng in ("bytes=2000-", "bytes=1000-1001", "bytes=50-10", "items=0-5", "bytes=1-2,4-5"):
            r = c.get(f"/media/{item.id}", headers={"Range": rng})
            assert r.status_code == 416, rng
            assert r.headers["content-range"] == "bytes */1000"


def test_full_body_without_range(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        r = c.get(f"/media/{item.id}")
        assert r.status_code == 200
        assert r.headers["content-length"] == "1000"
        assert r.headers["accept-ranges"] == "bytes"
        assert len(r.content) == 1000


def test_view_counting(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        url = f"/media/{item.id}"
        c.get(url)
        c.get(url, headers={"Range": "bytes=0-"})
        c.get(url, headers={"Range": "bytes=0-99"})
        c.get(url, headers={"Range": "bytes=500-"})
        c.get(url, headers={"Range": "bytes=5000-"})
        assert c.app.state.media_store.require(item.id).views == 2


def test_not_servable_states(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        assert c.get("/media/nope").status_code == 404

        pending = add_item(c, tmp_path, name="p.mp4", status=MediaStatus.pending)
        assert c.get(f"/media/{pending.id}").status_code == 409

        gone = add_item(c, tmp_path, name="gone.mp4")
        Path(gone.file_path).unlink()
        assert c.get(f"/media/{gone.id}").status_code == 404
        assert c.app.state.media_store.require(gone.id).views == 0


def test_blank_range_header_is_a_full_view(tmp_path: Path) -> None:
    with make_client(tmp_path) as c:
        item = add_item(c, tmp_path)
        for rng in ("", "  "):
            r = c.get(f"/media/{item.id}", headers={"Range": rng})
            assert r.status_code == 200
            assert len(r.content) == 1000
        assert c.app.state.media_store.require(item.id).views == 2
