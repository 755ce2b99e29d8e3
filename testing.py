"""Test utilities."""

from __future__ import annotations

from collections.abc import Iterable

import asyncio
import pathlib
import signal
import sys
import warnings


# Suppress unawaited coroutine warnings from AsyncMock in tests.
warnings.filterwarnings("ignore", message="coroutine.*was never awaited")


def run_tests(test_file: str) -> None:
    """Run pytest on a test file with standard flags.

    Usage:
        if __name__ == "__main__":
            from testing import run_tests
            run_tests(__file__)
    """
    import pytest

    sys.exit(
        pytest.main(
            [
                test_file,
                "-v",
                "-s",
                "-W",
                "ignore::pytest.PytestAssertRewriteWarning",
                *sys.argv[1:],
            ]
        )
    )


# =============================================================================
# Fake Encoder Process
# =============================================================================


class FakeStream:
    """Async line reader over canned bytes; blocks on `gate` once drained."""

    def __init__(self, lines: Iterable[str] = (), gate: asyncio.Event | None = None):
        self._lines = [line.encode() + b"\n" for line in lines]
        self._gate = gate

    async def readline(self) -> bytes:
        if self._lines:
            await asyncio.sleep(0)
            return self._lines.pop(0)
        if self._gate is not None:
            await self._gate.wait()
        return b""


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process running ffmpeg.

    With hang=True, output never ends until the process is signalled,
    like an encoder stuck on a bad source.
    """

    def __init__(
        self,
        progress: Iterable[str] = (),
        stderr: Iterable[str] = (),
        returncode: int = 0,
        hang: bool = False,
    ):
        self.pid = None
        self.returncode: int | None = None
        self.signals: list[int] = []
        self._exit_code = returncode
        self._hang = hang
        self._exited = asyncio.Event()
        gate = self._exited if hang else None
        self.stdout = FakeStream(progress, gate)
        self.stderr = FakeStream(stderr, gate)

    async def wait(self) -> int:
        if self._hang:
            await self._exited.wait()
        elif self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode  # type: ignore[return-value]

    def send_signal(self, sig: int) -> None:
        self.signals.append(sig)
        if self.returncode is None:
            self.returncode = -sig
        self._exited.set()

    def terminate(self) -> None:
        self.send_signal(signal.SIGTERM)

    def kill(self) -> None:
        self.send_signal(signal.SIGKILL)


def write_rendition(output_dir: pathlib.Path, segments: int = 3, segment_bytes: int = 100) -> None:
    """Lay down what a successful HLS encode leaves in its output dir."""
    output_dir.mkdir(parents=True, exist_ok=True)
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:4", "#EXT-X-PLAYLIST-TYPE:VOD"]
    for i in range(segments):
        name = f"segment_{i:03d}.ts"
        (output_dir / name).write_bytes(b"\0" * segment_bytes)
        lines += ["#EXTINF:4.000000,", name]
    lines.append("#EXT-X-ENDLIST")
    (output_dir / "playlist.m3u8").write_text("\n".join(lines) + "\n")


def progress_lines(duration: float, steps: int = 2) -> list[str]:
    """ffmpeg `-progress pipe:1` output for an encode of `duration` seconds."""
    lines = []
    for i in range(1, steps + 1):
        out_us = int(duration * i / steps * 1_000_000)
        lines += [
            "frame=100",
            "bitrate=1234.5kbits/s",
            f"out_time_us={out_us}",
            "progress=end" if i == steps else "progress=continue",
        ]
    return lines
