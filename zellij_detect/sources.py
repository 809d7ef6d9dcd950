from __future__ import annotations

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Optional, Tuple

from .errors import InvalidInput, NotFound, SourceReadError


logger = logging.getLogger("zellij_detect.sources")


class FileSource:
    """Polls a small, whole-content file such as a status artifact.

    Each ``read`` returns the full current content. The first read after
    ``open`` returns immediately so a file that already holds a pattern is
    seen without waiting for a change; later reads suspend until the file's
    (mtime, size, inode) signature changes.
    """

    replaces = True

    def __init__(self, path: str, poll_interval: float = 0.1):
        self.path = Path(path)
        self.poll = poll_interval
        self._sig: Optional[Tuple[int, int, Optional[int]]] = None
        self._primed = False
        self._closed = False

    @staticmethod
    def _signature(st: os.stat_result) -> Tuple[int, int, Optional[int]]:
        return (st.st_mtime_ns, st.st_size, getattr(st, "st_ino", None))

    async def open(self) -> None:
        try:
            st = self.path.stat()
        except FileNotFoundError:
            raise NotFound(f"File does not exist: {self.path}", "file_path")
        except OSError as e:
            raise SourceReadError(f"Cannot stat {self.path}: {e}")
        # Reading a FIFO or device here would block the loop
        if not stat.S_ISREG(st.st_mode):
            raise InvalidInput(f"Not a regular file: {self.path}", "file_path")
        self._sig = self._signature(st)

    def _read_all(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise SourceReadError(f"Error reading file {self.path}: {e}")

    async def read(self) -> bytes:
        if not self._primed:
            self._primed = True
            return self._read_all()
        while not self._closed:
            await asyncio.sleep(self.poll)
            try:
                st = self.path.stat()
            except FileNotFoundError:
                # Mid-rewrite (rename); wait for it to come back
                continue
            except OSError as e:
                raise SourceReadError(f"Cannot stat {self.path}: {e}")
            sig = self._signature(st)
            if sig == self._sig:
                continue
            if not stat.S_ISREG(st.st_mode):
                raise SourceReadError(f"{self.path} was replaced by something other than a regular file")
            self._sig = sig
            try:
                return self.path.read_bytes()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise SourceReadError(f"Error reading file {self.path}: {e}")
        raise SourceReadError(f"File source closed: {self.path}")

    def close(self) -> None:
        self._closed = True


class PipeSource:
    """Streams bytes from a named pipe through an asyncio read-pipe transport.

    The FIFO is opened non-blocking so ``open`` never hangs; the first
    ``read`` suspends until a writer attaches and writes, or attaches and
    closes. ``read`` returns ``b""`` once every writer has closed its end.
    """

    replaces = False

    def __init__(self, path: str, chunk_size: int = 65536):
        self.path = str(path)
        self.chunk_size = chunk_size
        self._file = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._transport: Optional[asyncio.ReadTransport] = None
        self._closed = False

    async def open(self) -> None:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            raise NotFound(f"Pipe does not exist: {self.path}", "pipe_path")
        except OSError as e:
            raise SourceReadError(f"Cannot stat {self.path}: {e}")
        if not stat.S_ISFIFO(st.st_mode):
            raise InvalidInput(f"Not a named pipe: {self.path}", "pipe_path")
        try:
            fd = os.open(self.path, os.O_RDONLY | os.O_NONBLOCK)
        except FileNotFoundError:
            raise NotFound(f"Pipe does not exist: {self.path}", "pipe_path")
        except OSError as e:
            raise SourceReadError(f"Failed to open pipe {self.path}: {e}")
        self._file = os.fdopen(fd, "rb", buffering=0)
        loop = asyncio.get_running_loop()
        self._reader = asyncio.StreamReader(limit=self.chunk_size)
        protocol = asyncio.StreamReaderProtocol(self._reader)
        try:
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, self._file)
        except OSError as e:
            self.close()
            raise SourceReadError(f"Failed to attach pipe {self.path}: {e}")
        logger.debug(f"Opened pipe {self.path}")

    async def read(self) -> bytes:
        if self._reader is None or self._closed:
            raise SourceReadError(f"Pipe source is not open: {self.path}")
        try:
            return await self._reader.read(self.chunk_size)
        except OSError as e:
            raise SourceReadError(f"Error reading pipe {self.path}: {e}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._transport is not None:
            # The transport owns the file object and closes it
            self._transport.close()
        elif self._file is not None:
            self._file.close()
        self._transport = None
        self._file = None
