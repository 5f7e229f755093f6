"""Tests for the conversion orchestrator -- single jobs and sequential batches."""

import threading
from pathlib import Path
from unittest.mock import MagicMock

from m4b_creator.discovery import AudiobookDiscoverer
from m4b_creator.errors import ProbeError
from m4b_creator.models import AudioProbe, ConversionOptions, ConversionResult
from m4b_creator.orchestrator import (
    TELEGRAM_WARNING_MESSAGE,
    TRANSCODE_FAILED_MESSAGE,
    ConversionOrchestrator,
    summarize,
)
from m4b_creator.ui import QuietProgressReporter


class RecordingUI:
    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def display_info(self, message):
        self.messages.append(("info", message))

    def display_processing_status(self, message):
        self.messages.append(("status", message))

    def display_success(self, message):
        self.messages.append(("success", message))

    def display_warning(self, message):
        self.messages.append(("warning", message))

    def display_error(self, message):
        self.messages.append(("error", message))

    def text(self, kind=None) -> str:
        return "\n".join(m for k, m in self.messages if kind is None or k == kind)


class FakeGateway:
    """Records scratch dirs and writes a fake .m4b instead of running ffmpeg."""

    def __init__(self, transcode_ok=True, extradata_valid=True, on_transcode=None,
                 partial_output=False):
        self.transcode_ok = transcode_ok
        self.partial_output = partial_output
        self.extradata_valid = extradata_valid
        self.on_transcode = on_transcode
        self.work_dirs: list[Path] = []
        self.verify_calls = 0
        self.detect_best_encoder = MagicMock(return_value="aac")

    def probe(self, file):
        return AudioProbe(duration_seconds=30.0, bitrate_kbps=64, channels=1)

    def render_concat_list(self, audio_files, work_dir):
        self.work_dirs.append(work_dir)
        path = work_dir / "concat_list.txt"
        path.write_text("".join(f"file '{f}'\n" for f in audio_files), encoding="utf-8")
        return path

    def render_chapter_metadata(self, chapters, title, author, work_dir):
        path = work_dir / "chapters.txt"
        path.write_text(";FFMETADATA1\n", encoding="utf-8")
        return path

    def transcode(self, concat_list, chapter_metadata, output, job, options,
                  on_progress=None, cancel=None):
        assert concat_list.exists() and chapter_metadata.exists()
        if self.on_transcode is not None:
            self.on_transcode(job)
        if on_progress is not None:
            on_progress(100.0)
        if self.transcode_ok or self.partial_output:
            output.write_bytes(b"\0" * 2048)
        return self.transcode_ok

    def verify_compatibility(self, output):
        self.verify_calls += 1
        return self.extradata_valid


def _book(root: Path, name: str, tracks: int = 2) -> Path:
    book = root / name
    book.mkdir(parents=True)
    for i in range(1, tracks + 1):
        (book / f"{i:02d}.mp3").write_bytes(b"")
    return book


def _orchestrator(gateway) -> tuple[ConversionOrchestrator, RecordingUI]:
    ui = RecordingUI()
    orch = ConversionOrchestrator(
        gateway=gateway,
        discoverer=AudiobookDiscoverer(gateway, max_workers=2),
        ui=ui,
        progress=QuietProgressReporter(),
        temp_prefix="m4b-test-",
    )
    return orch, ui


class TestConvert:
    def test_success(self, tmp_path):
        gateway = FakeGateway()
        orch, ui = _orchestrator(gateway)
        book = _book(tmp_path / "src", "Book: One")
        out = tmp_path / "out"

        result = orch.convert(book, ConversionOptions(output_dir=out))

        assert result.success is True
        assert result.title == "Book: One"
        assert result.output_file == out / "Book_ One.m4b"
        assert result.output_file.exists()
        assert result.file_size_bytes == 2048
        assert result.duration_seconds == 60.0
        assert result.telegram_extradata_valid is None
        assert gateway.verify_calls == 0
        assert "Using encoder: aac" in ui.text("info")
        assert "Chapters: 2" in ui.text("info")

    def test_scratch_dir_removed(self, tmp_path):
        gateway = FakeGateway()
        orch, _ = _orchestrator(gateway)
        orch.convert(_book(tmp_path, "Book"), ConversionOptions(output_dir=tmp_path / "out"))
        assert len(gateway.work_dirs) == 1
        assert gateway.work_dirs[0].name.startswith("m4b-test-")
        assert not gateway.work_dirs[0].exists()

    def test_scratch_dir_removed_on_failure(self, tmp_path):
        gateway = FakeGateway(transcode_ok=False)
        orch, _ = _orchestrator(gateway)
        orch.convert(_book(tmp_path, "Book"), ConversionOptions(output_dir=tmp_path / "out"))
        assert not gateway.work_dirs[0].exists()

    def test_no_mp3_files(self, tmp_path):
        empty = tmp_path / "Empty"
        empty.mkdir()
        orch, _ = _orchestrator(FakeGateway())

        result = orch.convert(empty, ConversionOptions(output_dir=tmp_path / "out"))

        assert result.success is False
        assert result.title == "Empty"
        assert result.error_message == f"No MP3 files found in '{empty.absolute()}'"

    def test_transcode_failure(self, tmp_path):
        orch, _ = _orchestrator(FakeGateway(transcode_ok=False))
        result = orch.convert(
            _book(tmp_path, "Book"), ConversionOptions(output_dir=tmp_path / "out")
        )
        assert result.success is False
        assert result.title == "Book"
        assert result.error_message == TRANSCODE_FAILED_MESSAGE

    def test_partial_output_removed_on_failure(self, tmp_path):
        out = tmp_path / "out"
        orch, _ = _orchestrator(FakeGateway(transcode_ok=False, partial_output=True))
        result = orch.convert(_book(tmp_path, "Book"), ConversionOptions(output_dir=out))
        assert result.success is False
        assert not (out / "Book.m4b").exists()

    def test_creates_output_dir(self, tmp_path):
        orch, _ = _orchestrator(FakeGateway())
        out = tmp_path / "nested" / "out"
        result = orch.convert(_book(tmp_path, "Book"), ConversionOptions(output_dir=out))
        assert result.success is True
        assert out.is_dir()

    def test_telegram_valid(self, tmp_path):
        gateway = FakeGateway(extradata_valid=True)
        orch, _ = _orchestrator(gateway)
        result = orch.convert(
            _book(tmp_path, "Book"),
            ConversionOptions(output_dir=tmp_path / "out", telegram_mode=True),
        )
        assert result.success is True
        assert result.telegram_extradata_valid is True
        assert result.warning_message is None
        assert gateway.verify_calls == 1

    def test_telegram_invalid_is_warning_not_failure(self, tmp_path):
        orch, _ = _orchestrator(FakeGateway(extradata_valid=False))
        result = orch.convert(
            _book(tmp_path, "Book"),
            ConversionOptions(output_dir=tmp_path / "out", telegram_mode=True),
        )
        assert result.success is True
        assert result.telegram_extradata_valid is False
        assert result.warning_message == TELEGRAM_WARNING_MESSAGE

    def test_unexpected_error_becomes_failed_result(self, tmp_path):
        gateway = FakeGateway()
        gateway.detect_best_encoder.side_effect = RuntimeError("boom")
        orch, _ = _orchestrator(gateway)
        book = _book(tmp_path, "Book")

        result = orch.convert(book, ConversionOptions(output_dir=tmp_path / "out"))

        assert result.success is False
        assert result.title == "Book"
        assert result.error_message == "Conversion failed: boom"
        assert not gateway.work_dirs[0].exists()

    def test_probe_error_becomes_failed_result(self, tmp_path):
        gateway = FakeGateway()

        def probe(file):
            raise ProbeError(file, "no duration")

        gateway.probe = probe
        orch, _ = _orchestrator(gateway)
        result = orch.convert(
            _book(tmp_path, "Book"), ConversionOptions(output_dir=tmp_path / "out")
        )
        assert result.success is False
        assert result.error_message == "Conversion failed: Failed to probe 01.mp3: no duration"


class TestConvertBatch:
    def test_empty_batch(self, tmp_path):
        orch, _ = _orchestrator(FakeGateway())
        assert orch.convert_batch([], ConversionOptions(output_dir=tmp_path)) == []

    def test_failure_does_not_stop_batch(self, tmp_path):
        src = tmp_path / "src"
        first = _book(src, "First")
        empty = src / "Empty"
        empty.mkdir()
        third = _book(src, "Third")
        orch, ui = _orchestrator(FakeGateway())

        results = orch.convert_batch(
            [first, empty, third], ConversionOptions(output_dir=tmp_path / "out")
        )

        assert [r.success for r in results] == [True, False, True]
        assert [r.title for r in results] == ["First", "Empty", "Third"]
        assert "✓ Completed: First" in ui.text("success")
        assert "✗ Failed: Empty" in ui.text("error")
        assert "Processing: Third" in ui.text("status")

    def test_cancel_before_start(self, tmp_path):
        cancel = threading.Event()
        cancel.set()
        gateway = FakeGateway()
        orch, _ = _orchestrator(gateway)

        results = orch.convert_batch(
            [_book(tmp_path, "A"), _book(tmp_path, "B")],
            ConversionOptions(output_dir=tmp_path / "out"),
            cancel,
        )

        assert results == []
        assert gateway.work_dirs == []

    def test_cancel_mid_batch_stops_before_next_job(self, tmp_path):
        cancel = threading.Event()
        gateway = FakeGateway(on_transcode=lambda job: cancel.set())
        orch, _ = _orchestrator(gateway)

        results = orch.convert_batch(
            [_book(tmp_path, "A"), _book(tmp_path, "B"), _book(tmp_path, "C")],
            ConversionOptions(output_dir=tmp_path / "out"),
            cancel,
        )

        assert len(results) == 1
        assert results[0].title == "A"

    def test_telegram_warning_displayed(self, tmp_path):
        orch, ui = _orchestrator(FakeGateway(extradata_valid=False))
        orch.convert_batch(
            [_book(tmp_path, "Book")],
            ConversionOptions(output_dir=tmp_path / "out", telegram_mode=True),
        )
        assert TELEGRAM_WARNING_MESSAGE in ui.text("warning")


class TestSummarize:
    def test_counts(self):
        results = [
            ConversionResult(success=True, title="A"),
            ConversionResult.failed("B", "nope"),
            ConversionResult(success=True, title="C"),
        ]
        summary = summarize(results)
        assert (summary.completed, summary.failed, summary.total) == (2, 1, 3)
        assert summary.failed_titles == ["B"]
        assert summary.cancelled is False

    def test_shortfall_means_cancelled(self):
        summary = summarize([ConversionResult(success=True, title="A")], total=3)
        assert summary.total == 3
        assert summary.cancelled is True

    def test_display_summary(self):
        orch, ui = _orchestrator(FakeGateway())
        orch.display_summary(summarize([ConversionResult.failed("B", "x")], total=2))
        assert "0/2 succeeded, 1 failed" in ui.text("status")
        assert "Cancelled before 1 books" in ui.text("warning")
        assert "  - B" in ui.text("error")
