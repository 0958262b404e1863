"""
Byte sources a tail session can follow.

Every source exposes the same small surface: ``name``, ``poll()`` returning
the bytes that became available since the previous call (``b""`` when there
is nothing new) and ``close()``. Sessions never look at which variant they
hold.
"""

import enum
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Queue
from typing import List, Optional, Sequence

from .logger import get_logger

log = get_logger("sources")

DEFAULT_MAX_READ = 64 * 1024


class SourceError(Exception):
    pass


class SourceOpenError(SourceError):
    """The source could not be opened; the session never starts."""


class SourceNotFound(SourceOpenError):
    pass


class SourcePermissionDenied(SourceOpenError):
    pass


class SourceIOError(SourceError):
    """The source became unreadable mid-session. ``str(exc)`` is stable per cause."""


class Mode(str, enum.Enum):
    MULTI = "multi"
    SINGLE = "single"
    STDIN = "stdin"


def _describe(exc: OSError, path: str) -> str:
    return f"{exc.strerror or exc}: {path}"


def _open_binary(path: str):
    try:
        return open(path, "rb")
    except FileNotFoundError as e:
        raise SourceNotFound(_describe(e, path)) from e
    except PermissionError as e:
        raise SourcePermissionDenied(_describe(e, path)) from e
    except OSError as e:
        raise SourceNotFound(_describe(e, path)) from e


class FileSource:
    """Follow a file that is being appended to.

    The read cursor only moves forward. When the path disappears every poll
    raises the same :class:`SourceIOError`; when it reappears as a new file the
    handle is swapped and reading resumes from the new file's start.
    """

    def __init__(self, path: str, max_read: int = DEFAULT_MAX_READ):
        self.path = path
        self.name = path
        self.max_read = max_read
        self._handle = _open_binary(path)
        self._inode = os.fstat(self._handle.fileno()).st_ino

    def _reopen(self):
        try:
            handle = _open_binary(self.path)
        except SourceOpenError as e:
            raise SourceIOError(str(e)) from e
        self._handle.close()
        self._handle = handle
        self._inode = os.fstat(handle.fileno()).st_ino
        log.info("%s was replaced, following the new file", self.path)

    def poll(self) -> bytes:
        try:
            st = os.stat(self.path)
        except OSError as e:
            raise SourceIOError(_describe(e, self.path)) from e
        if st.st_ino != self._inode:
            self._reopen()
        try:
            # readlines stops at the first line end past the hint
            return b"".join(self._handle.readlines(self.max_read))
        except OSError as e:
            raise SourceIOError(_describe(e, self.path)) from e

    def close(self):
        self._handle.close()


class RescanSource:
    """Send the whole file again every time it changes (single-file mode)."""

    def __init__(self, path: str):
        self.path = path
        self.name = path
        self._signature = None
        try:
            os.stat(path)
        except FileNotFoundError as e:
            raise SourceNotFound(_describe(e, path)) from e
        if not os.access(path, os.R_OK):
            raise SourcePermissionDenied(f"Permission denied: {path}")

    def poll(self) -> bytes:
        try:
            st = os.stat(self.path)
            signature = (st.st_mtime_ns, st.st_size, st.st_ino)
            if signature == self._signature:
                return b""
            with open(self.path, "rb") as f:
                data = f.read()
        except OSError as e:
            self._signature = None
            raise SourceIOError(_describe(e, self.path)) from e
        self._signature = signature
        return data

    def close(self):
        self._signature = None


class StdinFeed:
    """One reader thread for standard input, shared by every stdin session.

    Standard input is a single forward-only stream, so lines are handed to
    whichever session polls first.
    """

    def __init__(self, stream=None):
        self._stream = stream
        self._lines: Queue = Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.eof = False

    def start(self):
        with self._lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="stdin-feed", daemon=True)
                self._thread.start()

    def _run(self):
        stream = self._stream if self._stream is not None else sys.stdin.buffer
        for line in iter(stream.readline, b""):
            self._lines.put(line)
        self.eof = True
        log.info("standard input reached end of file")

    def take(self, limit: int) -> bytes:
        chunks: List[bytes] = []
        size = 0
        while size < limit:
            try:
                line = self._lines.get_nowait()
            except Empty:
                break
            chunks.append(line)
            size += len(line)
        return b"".join(chunks)


_stdin_feed: Optional[StdinFeed] = None


def stdin_feed() -> StdinFeed:
    global _stdin_feed
    if _stdin_feed is None:
        _stdin_feed = StdinFeed()
    _stdin_feed.start()
    return _stdin_feed


class StdinSource:
    name = "<stdin>"

    def __init__(self, feed: StdinFeed, max_read: int = DEFAULT_MAX_READ):
        self.feed = feed
        self.max_read = max_read

    def poll(self) -> bytes:
        return self.feed.take(self.max_read)

    def close(self):
        # stdin outlives every session
        pass


@dataclass(frozen=True)
class SourceSpec:
    mode: Mode
    path: Optional[str] = None


class SourceCatalog:
    """The set of sources viewers may pick from, for one run mode."""

    def __init__(self, mode: Mode, paths: Sequence[str] = (),
                 max_read: int = DEFAULT_MAX_READ, feed: Optional[StdinFeed] = None):
        self.mode = Mode(mode)
        self.paths = [str(Path(p).absolute()) for p in paths]
        self.max_read = max_read
        self._feed = feed
        if self.mode is Mode.SINGLE and len(self.paths) != 1:
            raise ValueError("single-file mode needs exactly one path")
        if self.mode is Mode.MULTI and not self.paths:
            raise ValueError("multi-file mode needs at least one path")

    @property
    def names(self) -> List[str]:
        return list(self.paths) if self.mode is Mode.MULTI else []

    def resolve(self, requested: Optional[str]) -> SourceSpec:
        if self.mode is Mode.STDIN:
            return SourceSpec(Mode.STDIN)
        if self.mode is Mode.SINGLE:
            path = self.paths[0]
        else:
            if not requested:
                raise SourceNotFound("no file selected")
            path = str(Path(requested).absolute())
            if path not in self.paths:
                raise SourceNotFound(f"not a tailed file: {requested}")
        if not os.path.isfile(path):
            raise SourceNotFound(f"No such file or directory: {path}")
        if not os.access(path, os.R_OK):
            raise SourcePermissionDenied(f"Permission denied: {path}")
        return SourceSpec(self.mode, path)

    def open(self, spec: SourceSpec):
        if spec.mode is Mode.STDIN:
            feed = self._feed if self._feed is not None else stdin_feed()
            feed.start()
            return StdinSource(feed, self.max_read)
        if spec.mode is Mode.SINGLE:
            return RescanSource(spec.path)
        return FileSource(spec.path, self.max_read)
