"""Duration probe tests. ffprobe is never executed; subprocess.run is mocked."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from vodcast.domain.playlist import Playlist, PlaylistItem
from vodcast.infra.exceptions import ProbeError
from vodcast.runtime.duration_probe import DurationProber, probe_duration_seconds


def _completed(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout
    result.returncode = returncode
    result.stderr = stderr
    return result


@patch("vodcast.runtime.duration_probe.subprocess.run")
def test_probe_rounds_up(mock_run):
    mock_run.return_value = _completed('{"format": {"duration": "1799.2"}}')
    assert probe_duration_seconds("https://media/a.mp4") == 1800
    cmd = mock_run.call_args[0][0]
    assert cmd[0] == "ffprobe"
    assert cmd[-1] == "https://media/a.mp4"


@pytest.mark.parametrize(
    "result",
    [
        _completed(returncode=1, stderr="No such file"),
        _completed("not json"),
        _completed('{"format": {}}'),
        _completed('{"format": {"duration": "0"}}'),
    ],
)
def test_probe_failures_raise(result):
    with patch("vodcast.runtime.duration_probe.subprocess.run", return_value=result):
        with pytest.raises(ProbeError):
            probe_duration_seconds("x")


def test_probe_missing_binary_and_timeout():
    with patch("vodcast.runtime.duration_probe.subprocess.run", side_effect=FileNotFoundError()):
        with pytest.raises(ProbeError):
            probe_duration_seconds("x")
    with patch(
        "vodcast.runtime.duration_probe.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=1),
    ):
        with pytest.raises(ProbeError):
            probe_duration_seconds("x")


def test_prober_only_probes_unknown_file_durations():
    calls = []

    def fake_probe(ref, **kwargs):
        calls.append(ref)
        if ref == "https://media/broken.mp4":
            raise ProbeError("bad")
        return 42

    playlist = Playlist(
        [
            PlaylistItem("known", "Known", "https://media/known.mp4", 100),
            PlaylistItem("yt", "Embed", "https://www.youtube.com/watch?v=x"),
            PlaylistItem("file", "File", "https://media/file.mp4"),
            PlaylistItem("broken", "Broken", "https://media/broken.mp4"),
        ]
    )
    found = DurationProber(probe_fn=fake_probe).probe_missing(playlist)
    assert found == {"file": 42}
    assert calls == ["https://media/file.mp4", "https://media/broken.mp4"]
