"""
Tests for the ffmpeg runner.

Run with: pytest tests/test_ffmpeg.py -v
"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from walkreel.core.exceptions import ProcessingFailed
from walkreel.core.utils.ffmpeg import (
    filter_benign_warnings,
    parse_duration,
    probe_duration,
    run_ffmpeg,
)


class TestFilterBenignWarnings:
    def test_filters_known_noise(self):
        stderr = "\n".join([
            "[mp4 @ 0x55] Starting second pass: moving the moov atom to the beginning of the file",
            "Error while decoding stream #0:0",
        ])
        filtered, warnings = filter_benign_warnings(stderr)
        assert filtered == "Error while decoding stream #0:0"
        assert len(warnings) == 1


class TestRunFfmpeg:
    def test_prepends_flags(self):
        with patch("walkreel.core.utils.ffmpeg.subprocess.run") as run:
            run.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
            run_ffmpeg(["-i", "in.mp4", "out.mp4"], ffmpeg_path="/opt/bin/ffmpeg")

        cmd = run.call_args.args[0]
        assert cmd == ["/opt/bin/ffmpeg", "-nostdin", "-loglevel", "error", "-i", "in.mp4", "out.mp4"]
        assert run.call_args.kwargs["check"] is True

    def test_non_zero_exit_carries_stderr(self):
        error = subprocess.CalledProcessError(1, ["ffmpeg"], stderr="in.mp4: No such file or directory")
        with patch("walkreel.core.utils.ffmpeg.subprocess.run", side_effect=error):
            with pytest.raises(ProcessingFailed) as exc_info:
                run_ffmpeg(["-i", "in.mp4", "out.mp4"])
        assert "No such file" in exc_info.value.stderr
        assert exc_info.value.code == "VIDEO_PROCESSING_FAILED"

    def test_missing_binary(self):
        with patch("walkreel.core.utils.ffmpeg.subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(ProcessingFailed):
                run_ffmpeg(["-version"])


class TestDuration:
    def test_parse_banner(self):
        assert parse_duration("  Duration: 00:01:02.50, start: 0.000000, bitrate: 1 kb/s") == pytest.approx(62.5)

    def test_parse_missing(self):
        with pytest.raises(ProcessingFailed):
            parse_duration("no banner here")

    def test_probe_json(self):
        result = MagicMock(stdout=json.dumps({"format": {"duration": "29.960000"}}), stderr="")
        with patch("walkreel.core.utils.ffmpeg.subprocess.run", return_value=result):
            assert probe_duration("final.mp4") == pytest.approx(29.96)

    def test_probe_falls_back_to_banner(self):
        result = MagicMock(stdout="{}", stderr="Duration: 00:00:30.04, start: 0")
        with patch("walkreel.core.utils.ffmpeg.subprocess.run", return_value=result):
            assert probe_duration("final.mp4") == pytest.approx(30.04)

    def test_probe_failure(self):
        error = subprocess.CalledProcessError(1, ["ffprobe"], stderr="Invalid data found")
        with patch("walkreel.core.utils.ffmpeg.subprocess.run", side_effect=error):
            with pytest.raises(ProcessingFailed):
                probe_duration("final.mp4")
