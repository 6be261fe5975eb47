"""
Tests for thumbnail rendering: coalescing, atomic placement and the
background render of every page.
"""

import threading
import time
from datetime import timedelta

import pytest

from pdf_tools_backend import tools
from pdf_tools_backend.job_store import JobStore
from pdf_tools_backend.previews import PreviewRenderer, match_lazy_preview, preview_filename


@pytest.fixture
def store(tmp_path):
    return JobStore(tmp_path / "work", retention=timedelta(hours=2))


@pytest.fixture
def job(store):
    job = store.allocate()
    job.file("input.pdf").write_bytes(b"%PDF-1.4")
    return job


class SlowPdftoppm:
    """Writes ``<prefix>.png`` after a short delay and counts invocations per page."""

    def __init__(self, delay=0.1, fail_on=None):
        self.delay = delay
        self.fail_on = fail_on
        self.pages = []
        self._lock = threading.Lock()

    def __call__(self, job_path, program, *args, timeout=None):
        args = [str(arg) for arg in args]
        page = int(args[args.index("-f") + 1])
        with self._lock:
            self.pages.append(page)
        if page == self.fail_on:
            return tools.ToolResult(returncode=99, output="Wrong page range given")
        time.sleep(self.delay)
        with open(args[-1] + ".png", "wb") as handle:
            handle.write(b"\x89PNG page %d" % page)
        return tools.ToolResult(returncode=0, output="")


class TestLazyPattern:
    @pytest.mark.parametrize(
        "relative,expected",
        [
            ("abc/previews/page-3.png", ("abc", 3)),
            ("abc/previews/page-0.png", None),
            ("abc/previews/page-x.png", None),
            ("abc/output.pdf", None),
            ("abc/nested/previews/page-1.png", None),
            ("abc/previews/page-1.PNG", None),
        ],
    )
    def test_match_lazy_preview(self, relative, expected):
        assert match_lazy_preview(relative) == expected

    def test_preview_filename(self):
        assert preview_filename(12) == "previews/page-12.png"


class TestRenderPage:
    def test_concurrent_requests_render_once(self, store, job, monkeypatch):
        fake = SlowPdftoppm()
        monkeypatch.setattr(tools, "execute", fake)
        renderer = PreviewRenderer(store, dpi=110)

        results = []
        threads = [threading.Thread(target=lambda: results.append(renderer.render_page(job, 4))) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fake.pages == [4]
        assert len(set(results)) == 1
        assert results[0].read_bytes() == b"\x89PNG page 4"

    def test_no_temporary_files_left(self, store, job, monkeypatch):
        monkeypatch.setattr(tools, "execute", SlowPdftoppm(delay=0))
        PreviewRenderer(store).render_page(job, 1)
        assert [path.name for path in (job.path / "previews").iterdir()] == ["page-1.png"]

    def test_out_of_range_page_raises(self, store, job, monkeypatch):
        monkeypatch.setattr(tools, "execute", SlowPdftoppm(delay=0, fail_on=7))
        with pytest.raises(tools.ToolError):
            PreviewRenderer(store).render_page(job, 7)
        assert not (job.path / "previews" / "page-7.png").exists()


class TestRenderAll:
    def test_renders_every_page_under_lease(self, store, job, monkeypatch):
        fake = SlowPdftoppm(delay=0)
        monkeypatch.setattr(tools, "execute", fake)
        renderer = PreviewRenderer(store, max_workers=1)

        leased = []
        original = renderer.render_page

        def spy(job_, page):
            leased.append(store.is_leased(job_.id))
            return original(job_, page)

        monkeypatch.setattr(renderer, "render_page", spy)
        renderer.schedule_all(job, 3).result(timeout=5)

        assert sorted(fake.pages) == [1, 2, 3]
        assert all(leased)
        assert not store.is_leased(job.id)

    def test_stops_at_first_failure(self, store, job, monkeypatch):
        fake = SlowPdftoppm(delay=0, fail_on=2)
        monkeypatch.setattr(tools, "execute", fake)
        PreviewRenderer(store).schedule_all(job, 4).result(timeout=5)
        assert fake.pages == [1, 2]

    def test_already_rendered_pages_are_skipped(self, store, job, monkeypatch):
        fake = SlowPdftoppm(delay=0)
        monkeypatch.setattr(tools, "execute", fake)
        (job.path / "previews").mkdir()
        job.file("previews/page-1.png").write_bytes(b"done")
        PreviewRenderer(store).render_all(job, 2)
        assert fake.pages == [2]


class TestShutdown:
    def test_no_renders_accepted_after_shutdown(self, store, job):
        renderer = PreviewRenderer(store)
        renderer.shutdown()
        with pytest.raises(RuntimeError):
            renderer.schedule_all(job, 1)
