"""
Tests for filename sanitizing, lenient form parsing, zipping and uploads.
"""

import io
import zipfile

import pytest
from fastapi import UploadFile

from pdf_tools_backend.errors import UploadTooLargeError
from pdf_tools_backend import uploads
from pdf_tools_backend.uploads import materialize, materialize_all
from pdf_tools_backend.utils import (
    base_name_without_ext,
    clamp,
    parse_float_default,
    parse_int_default,
    safe_extension,
    sanitize_filename,
    zip_directory,
)


class TestFilenames:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("report.pdf", "report.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\docs\\report.pdf", "report.pdf"),
            ("  spaced name.pdf  ", "spaced name.pdf"),
            ("", "file"),
            (None, "file"),
            ("..", "file"),
            ("dir/", "dir"),
        ],
    )
    def test_sanitize_filename(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_base_name_without_ext(self):
        assert base_name_without_ext("reports/Q3 summary.pdf") == "Q3 summary"
        assert base_name_without_ext("archive.tar.gz") == "archive.tar"
        assert base_name_without_ext("") == "file"

    @pytest.mark.parametrize(
        "name,expected",
        [("photo.JPG", ".jpg"), ("scan", ".png"), ("bad.p$g", ".png"), ("x.verylongextension", ".png")],
    )
    def test_safe_extension(self, name, expected):
        assert safe_extension(name, ".png") == expected


class TestFormParsing:
    @pytest.mark.parametrize("value,expected", [("12", 12), (" 7 ", 7), ("", 5), (None, 5), ("1.5", 5), ("x", 5)])
    def test_parse_int_default(self, value, expected):
        assert parse_int_default(value, 5) == expected

    @pytest.mark.parametrize("value,expected", [("0.5", 0.5), ("2", 2.0), ("", 0.25), ("abc", 0.25)])
    def test_parse_float_default(self, value, expected):
        assert parse_float_default(value, 0.25) == expected

    def test_clamp(self):
        assert clamp(500, 6, 72) == 72
        assert clamp(-1.0, 0.0, 1.0) == 0.0
        assert clamp(10, 6, 72) == 10


class TestZipDirectory:
    def test_relative_sorted_entries(self, tmp_path):
        source = tmp_path / "pages"
        (source / "nested").mkdir(parents=True)
        (source / "b.pdf").write_bytes(b"b")
        (source / "a.pdf").write_bytes(b"a")
        (source / "nested" / "c.pdf").write_bytes(b"c")

        archive_path = zip_directory(source, tmp_path / "pages.zip")
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ["a.pdf", "b.pdf", "nested/c.pdf"]
            assert archive.read("nested/c.pdf") == b"c"


def make_upload(content, filename="input.pdf"):
    return UploadFile(file=io.BytesIO(content), filename=filename)


class TestMaterialize:
    def test_streams_in_chunks(self, tmp_path):
        content = b"x" * 10_000
        destination = materialize(make_upload(content), tmp_path / "input.pdf", chunk_size=1024)
        assert destination.read_bytes() == content

    def test_configured_chunk_size_is_used(self, tmp_path, monkeypatch):
        monkeypatch.setattr(uploads, "CHUNK_SIZE", uploads.CHUNK_SIZE)
        uploads.configure(chunk_size=100)
        reads = []

        class RecordingBuffer(io.BytesIO):
            def read(self, size=-1):
                reads.append(size)
                return super().read(size)

        upload = UploadFile(file=RecordingBuffer(b"x" * 250), filename="input.pdf")
        materialize(upload, tmp_path / "input.pdf")
        assert set(reads) == {100}
        assert (tmp_path / "input.pdf").read_bytes() == b"x" * 250

    def test_limit_exceeded(self, tmp_path):
        with pytest.raises(UploadTooLargeError):
            materialize(make_upload(b"x" * 2048), tmp_path / "input.pdf", limit=1024, chunk_size=512)

    def test_client_filename_is_not_used(self, tmp_path):
        destination = materialize(make_upload(b"%PDF", "../../evil.pdf"), tmp_path / "input.pdf")
        assert destination == tmp_path / "input.pdf"
        assert not (tmp_path.parent.parent / "evil.pdf").exists()

    def test_limit_applies_to_all_parts_together(self, tmp_path):
        uploads = [make_upload(b"a" * 600), make_upload(b"b" * 600)]
        with pytest.raises(UploadTooLargeError):
            materialize_all(uploads, tmp_path, lambda index, _: f"input_{index}.pdf", limit=1000)

    def test_materialize_all_names(self, tmp_path, sample_pdf):
        with open(sample_pdf, "rb") as handle:
            uploads = [UploadFile(file=io.BytesIO(handle.read()), filename="a.pdf")]
        paths = materialize_all(uploads, tmp_path, lambda index, _: f"input_{index}.pdf")
        assert [path.name for path in paths] == ["input_0.pdf"]
        assert paths[0].read_bytes().startswith(b"%PDF-1.4")
