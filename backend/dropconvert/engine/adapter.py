"""Engine adapter: wraps the external media engine (an ffmpeg executable) behind load/exec/file IO/events."""
import asyncio
import codecs
import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union

from dropconvert.engine.events import EventHub, Subscription
from dropconvert.errors import EngineIOError, LoadFailure

logger = logging.getLogger("dropconvert.engine")

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")
# Duration:  00:01:02.50, start: ...
_RE_DURATION = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
# frame=  123 fps= 45 q=28.0 size=    1024kB time=00:00:05.12 bitrate=1638.4kbits/s speed=1.8x
_RE_TIME = re.compile(r"time=\s*(-?\d+):(\d{2}):(\d{2}(?:\.\d+)?)")

DEFAULT_VERSION_ARGS = ("-hide_banner", "-version")
DEFAULT_LISTING_ARGS = ("-hide_banner", "-formats")


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    sign = -1 if hours.startswith("-") else 1
    return sign * (abs(int(hours)) * 3600 + int(minutes) * 60 + float(seconds))


class EngineAdapter:
    """
    Owns one engine instance. The virtual filesystem is a private scratch
    directory created on load; every file name is a plain name inside it.
    """

    def __init__(
        self,
        version_args: Sequence[str] = DEFAULT_VERSION_ARGS,
        listing_args: Sequence[str] = DEFAULT_LISTING_ARGS,
    ):
        self._events = EventHub()
        self._version_args = list(version_args)
        self._listing_args = list(listing_args)
        self._core: Optional[str] = None
        self._workdir: Optional[Path] = None
        self._duration: Optional[float] = None
        self.loaded = False

    async def load(self, core_location: str, data_location: Union[str, Path]) -> None:
        """Locate the engine, mount its virtual filesystem and run its self-check."""
        if self.loaded:
            logger.debug("Engine already loaded from %s", self._core)
            return
        core = shutil.which(str(core_location))
        if not core:
            raise LoadFailure(f"Engine not found: {core_location}")
        self._mount(data_location)
        command = [core, *self._version_args]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_b, stderr_b = await process.communicate()
        except OSError as e:
            self._unmount()
            raise LoadFailure(f"Engine could not be started: {e}", command=command) from e
        stdout = stdout_b.decode("utf-8", errors="replace") if stdout_b else ""
        stderr = stderr_b.decode("utf-8", errors="replace") if stderr_b else ""
        if process.returncode != 0:
            self._unmount()
            raise LoadFailure(
                f"Engine self-check exited with code {process.returncode}",
                command=command,
                output=stderr or stdout,
            )
        self._core = core
        self.loaded = True
        version = stdout.strip().splitlines()[0] if stdout.strip() else core
        logger.info("Engine loaded: %s (virtual fs at %s)", version, self._workdir)

    async def execute(self, argv: Sequence[str]) -> int:
        """Run the engine with argv inside the virtual filesystem. Returns the exit code."""
        if not self.loaded:
            raise LoadFailure("Engine is not loaded")
        command = [self._core, *argv]
        self._duration = None
        logger.info("Engine exec: %s", " ".join(argv))
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(self._workdir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        await asyncio.gather(self._pump(process.stdout), self._pump(process.stderr))
        code = await process.wait()
        logger.info("Engine exited with code %s", code)
        if code == 0:
            self._events.emit("progress", 1.0)
        return code

    async def list_formats(self) -> list[str]:
        """Run the engine's format listing once and return its output lines."""
        lines: list[str] = []
        with self.on("log", lines.append):
            try:
                code = await self.execute(self._listing_args)
            except OSError as e:
                raise LoadFailure(f"Format listing could not be started: {e}", command=self._listing_args) from e
        if code != 0:
            logger.warning("Format listing exited with code %s (%s lines)", code, len(lines))
        return lines

    def on(self, event: str, callback: Callable[[Any], None]) -> Subscription:
        return self._events.subscribe(event, callback)

    def write_file(self, name: str, data: bytes) -> None:
        path = self._path(name)
        try:
            path.write_bytes(bytes(data))
        except OSError as e:
            raise EngineIOError(f"Could not write {name}: {e}") from e

    def read_file(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise EngineIOError(f"No such file in engine filesystem: {name}") from e
        except OSError as e:
            raise EngineIOError(f"Could not read {name}: {e}") from e

    def delete_file(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise EngineIOError(f"Could not delete {name}: {e}") from e

    def close(self) -> None:
        """Drop all subscriptions and remove the virtual filesystem."""
        self._events.clear()
        self._unmount()
        self.loaded = False
        logger.info("Engine closed")

    def _mount(self, data_location: Union[str, Path]) -> None:
        root = Path(data_location)
        try:
            root.mkdir(parents=True, exist_ok=True)
            self._workdir = Path(tempfile.mkdtemp(prefix="vfs-", dir=root))
        except OSError as e:
            raise LoadFailure(f"Could not create engine filesystem under {root}: {e}") from e

    def _unmount(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None

    def _path(self, name: str) -> Path:
        if self._workdir is None:
            raise EngineIOError("Engine filesystem is not mounted")
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise EngineIOError(f"Invalid engine file name: {name!r}")
        return self._workdir / name

    async def _pump(self, stream: asyncio.StreamReader) -> None:
        # Progress lines end with \r, so readline() is not enough
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            pending += decoder.decode(chunk)
            parts = _LINE_SPLIT.split(pending)
            pending = parts.pop()
            for line in parts:
                self._handle_line(line)
        pending += decoder.decode(b"", final=True)
        if pending:
            self._handle_line(pending)

    def _handle_line(self, line: str) -> None:
        if not line.strip():
            return
        logger.debug("engine: %s", line)
        self._events.emit("log", line)
        if self._duration is None:
            m = _RE_DURATION.search(line)
            if m:
                duration = _to_seconds(*m.groups())
                if duration > 0:
                    self._duration = duration
                return
        if self._duration:
            m = _RE_TIME.search(line)
            if m:
                fraction = _to_seconds(*m.groups()) / self._duration
                self._events.emit("progress", min(1.0, max(0.0, fraction)))
