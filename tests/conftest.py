"""Pytest configuration: make backend/ importable and provide a fake engine.

The fake implements the same contract as ``EngineAdapter`` (load, list_formats,
execute, virtual file IO, event subscriptions) without spawning processes.
"""

import os
import sys

import pytest

BACKEND_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "backend")

if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from dropconvert.engine.events import EventHub  # noqa: E402
from dropconvert.errors import EngineIOError, LoadFailure  # noqa: E402

SAMPLE_LISTING = [
    "File formats:",
    " D. = Demuxing supported",
    " .E = Muxing supported",
    " ---",
    " D  asf             ASF (Advanced / Active Streaming Format)",
    " DE avi             AVI (Audio Video Interleaved)",
    " DE matroska,webm   Matroska / WebM",
    " D  mov,mp4,m4a,3gp,3g2,mj2 QuickTime / MOV",
    "  E mp4             MP4 (MPEG-4 Part 14)",
    "  E webm            WebM",
    "",
]


class FakeEngine:
    def __init__(
        self,
        listing=None,
        exit_code=0,
        output=b"converted-bytes",
        progress=(0.1, 0.05, 0.3),
        fail_load=False,
        write_error=None,
        execute_error=None,
        listing_error=None,
    ):
        self.hub = EventHub()
        self.listing = list(SAMPLE_LISTING if listing is None else listing)
        self.exit_code = exit_code
        self.output = output
        self.progress = progress
        self.fail_load = fail_load
        self.write_error = write_error
        self.execute_error = execute_error
        self.listing_error = listing_error
        self.files = {}
        self.calls = []
        self.loaded = False
        self.closed = False
        # Hooks for observing the orchestrator from inside an execution
        self.during_execute = None
        self.after_progress = None

    async def load(self, core_location, data_location):
        if self.fail_load:
            raise LoadFailure(f"Engine not found: {core_location}")
        self.loaded = True

    async def list_formats(self):
        if self.listing_error:
            raise LoadFailure(f"Format listing failed: {self.listing_error}")
        return list(self.listing)

    async def execute(self, argv):
        self.calls.append(list(argv))
        if self.execute_error:
            raise OSError(self.execute_error)
        if self.during_execute:
            self.during_execute()
        for fraction in self.progress:
            self.hub.emit("progress", fraction)
            if self.after_progress:
                self.after_progress()
        if self.exit_code == 0 and self.output is not None:
            self.files[argv[-1]] = self.output
        return self.exit_code

    def write_file(self, name, data):
        if self.write_error:
            raise EngineIOError(self.write_error)
        self.files[name] = bytes(data)

    def read_file(self, name):
        if name not in self.files:
            raise EngineIOError(f"No such file in engine filesystem: {name}")
        return self.files[name]

    def delete_file(self, name):
        self.files.pop(name, None)

    def on(self, event, callback):
        return self.hub.subscribe(event, callback)

    def close(self):
        self.hub.clear()
        self.closed = True


@pytest.fixture
def fake_engine():
    return FakeEngine()
