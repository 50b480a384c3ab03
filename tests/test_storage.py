"""Test artifact sinks."""

import pytest

from invoice_export.services.storage import FileSystemSink, MemorySink, media_type_for


def test_filesystem_sink_writes_artifact(tmp_path):
    sink = FileSystemSink(tmp_path / "exports")

    artifact = sink.save("facturas_2024-01-01_2024-01-31.pdf", b"%PDF-1.4")

    assert (tmp_path / "exports" / "facturas_2024-01-01_2024-01-31.pdf").read_bytes() == b"%PDF-1.4"
    assert artifact.media_type == "application/pdf"
    assert artifact.size_bytes == 8


def test_memory_sink_round_trip():
    sink = MemorySink()
    sink.save("a.csv", b"x")
    assert sink.get("a.csv") == b"x"
    sink.discard("a.csv")
    assert sink.get("a.csv") is None


def test_media_types():
    assert media_type_for("report.ZIP") == "application/zip"
    assert media_type_for("data.csv").startswith("text/csv")
    assert media_type_for("unknown.bin") == "application/octet-stream"


def test_memory_sink_failed_save_leaves_nothing_behind():
    sink = MemorySink()

    with pytest.raises(TypeError):
        sink.save("broken.csv", object())

    assert sink.files == {}
