"""Tests for models.py -- chapter views, result formatting, constants."""

from pathlib import Path

import pytest

from m4b_creator.models import (
    BASELINE_ENCODER,
    ENCODER_PRIORITY,
    Chapter,
    ChapterSource,
    ConversionResult,
    format_duration,
    format_file_size,
)


class TestChapter:
    def test_integer_views_floor(self):
        ch = Chapter(title="One", start_seconds=10.9, end_seconds=20.1)
        assert ch.start_seconds_int == 10
        assert ch.end_seconds_int == 20

    def test_duration(self):
        ch = Chapter(title="One", start_seconds=60.0, end_seconds=150.0)
        assert ch.duration_seconds == 90.0

    def test_frozen(self):
        ch = Chapter(title="One", start_seconds=0.0, end_seconds=1.0)
        with pytest.raises(AttributeError):
            ch.title = "Two"


class TestChapterSource:
    def test_values(self):
        assert ChapterSource.METADATA == "metadata"
        assert ChapterSource.FILES == "files"


class TestFormatFileSize:
    @pytest.mark.parametrize(
        "size,expected",
        [
            (0, "0 B"),
            (512, "512 B"),
            (1024, "1 KB"),
            (1536, "1.5 KB"),
            (1024 * 1024, "1 MB"),
            (int(2.25 * 1024**3), "2.25 GB"),
        ],
    )
    def test_formats(self, size, expected):
        assert format_file_size(size) == expected

    def test_caps_at_gigabytes(self):
        assert format_file_size(2048 * 1024**3) == "2048 GB"


class TestFormatDuration:
    def test_zero(self):
        assert format_duration(0) == "00:00:00"

    def test_hours(self):
        assert format_duration(3661) == "01:01:01"

    def test_fractional(self):
        assert format_duration(90.7) == "00:01:30"

    def test_beyond_a_day(self):
        assert format_duration(90000) == "25:00:00"


class TestConversionResult:
    def test_failed_constructor(self):
        result = ConversionResult.failed("Book", "boom")
        assert result.success is False
        assert result.title == "Book"
        assert result.error_message == "boom"
        assert result.output_file is None
        assert result.telegram_extradata_valid is None

    def test_formatted_properties(self):
        result = ConversionResult(
            success=True,
            title="Book",
            output_file=Path("/out/Book.m4b"),
            duration_seconds=3661,
            file_size_bytes=1536,
        )
        assert result.duration_formatted == "01:01:01"
        assert result.file_size_formatted == "1.5 KB"


class TestEncoderPriority:
    def test_baseline_is_last(self):
        assert ENCODER_PRIORITY[-1] == BASELINE_ENCODER
        assert ENCODER_PRIORITY == ("aac_at", "libfdk_aac", "aac")
