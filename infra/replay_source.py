"""Replay frame source: re-emit a captured session from text files.

``ReplayFrameSource`` substitutes for a live connection in tests and
backtests. It reads one or more capture files in the order given,
splits them into records on a caller-specified delimiter, and pushes
each record to the registered handlers as a ``DATA`` frame, exactly as
a live source would.

File format:
    Plain text, one logical message per record, records separated by a
    delimiter string (commonly ``"\\n"``). No header and no length
    prefix. Encoding is caller specified (default UTF-8). Files are
    opened with ``newline=""`` so the delimiter is matched against the
    raw characters (``"\\r\\n"`` delimiters work as written).

Delimiter scanning:
    Characters are scanned one at a time while a match cursor tracks how
    much of the delimiter has been seen. A mismatch moves the cursor
    back to the longest delimiter prefix that is still a suffix of the
    text read so far, so a partial delimiter inside a record is kept
    literally while an overlapping real delimiter is still found. When
    the cursor reaches the end of the delimiter, the buffer minus the
    delimiter is one record. A non-empty trailing buffer at end of file
    is emitted as the final record.

    The fallback deliberately replaces a plain reset-to-zero scan, which
    misses a delimiter that begins inside a failed partial match:
    ``"aab"`` split on ``"ab"`` yields ``['a']`` here, where a
    reset-to-zero scan finds no delimiter at all.

Scope:
    ``start()`` replays everything synchronously on the caller's thread
    (no real-time pacing). ``send()`` and ``stop()`` are no-ops: there
    is no live counterpart. Calling ``start()`` again while a replay is
    in progress raises ``RuntimeError``.

Configuration errors:
    A missing file list, a missing delimiter, an unknown encoding, a
    missing/unreadable file, or a file that does not decode with the
    configured encoding raise :class:`ReplayConfigurationError` from
    ``start()`` before any frame is emitted. Every file is decoded once
    up front for this check. There is no partial replay mode.

Example:
    >>> from pathlib import Path
    >>> from infra.replay_source import ReplayConfig, ReplayFrameSource
    >>> source = ReplayFrameSource(
    ...     config=ReplayConfig(file_names=[Path("session.txt")], delimiter="\\n"),
    ... )
    >>> frames = []
    >>> _ = source.on_frame(frames.append)
    >>> source.start()
"""

import codecs
import logging
import os
from pathlib import Path
from typing import Iterator, TextIO

from pydantic import BaseModel, ConfigDict, Field

from core.frames import ControlSignal
from core.source import FrameSource

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ReplayConfigurationError(RuntimeError):
    """Replay cannot start: the configuration must be fixed first."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ReplayConfig(BaseModel):
    """Configuration for :class:`ReplayFrameSource`.

    ``file_names`` and ``delimiter`` may be left unset at construction
    and assigned later; they are checked when ``start()`` runs.

    Attributes:
        file_names: Capture files, replayed strictly in this order.
        delimiter: Record separator. Must be non-empty.
        encoding: Text encoding of the capture files.
        name: Source name stamped on every frame.
        chunk_size: Characters read from the file per ``read()`` call.

    Example:
        >>> config = ReplayConfig(file_names=["a.txt", "b.txt"], delimiter="\\n")
        >>> config.encoding
        'utf-8'
    """

    model_config = ConfigDict(validate_assignment=True)

    file_names: list[Path] | None = Field(
        default=None,
        description="Capture files, replayed in order",
    )
    delimiter: str | None = Field(
        default=None,
        description="Record separator between messages in the files",
    )
    encoding: str = Field(default="utf-8", description="Text encoding")
    name: str = Field(default="replay", min_length=1, description="Source name")
    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Characters per read() call",
    )


# ---------------------------------------------------------------------------
# Delimiter scanner
# ---------------------------------------------------------------------------


def _fallback_table(delimiter: str) -> list[int]:
    """For each delimiter prefix, length of its longest proper border."""
    table: list[int] = [0] * len(delimiter)
    border: int = 0
    for i in range(1, len(delimiter)):
        while border > 0 and delimiter[i] != delimiter[border]:
            border = table[border - 1]
        if delimiter[i] == delimiter[border]:
            border += 1
        table[i] = border
    return table


def iter_records(
    stream: TextIO,
    delimiter: str,
    chunk_size: int = 64 * 1024,
) -> Iterator[str]:
    """Yield delimiter-separated records from a character stream.

    Args:
        stream: Text stream, read sequentially.
        delimiter: Non-empty record separator.
        chunk_size: Characters per ``read()`` call.

    Yields:
        Each record without its delimiter, in stream order. Consecutive
        delimiters yield empty records. A non-empty trailing record
        without delimiter is yielded last.

    Raises:
        ValueError: If ``delimiter`` is empty.

    Example:
        >>> import io
        >>> list(iter_records(io.StringIO("A|B|C"), "|"))
        ['A', 'B', 'C']
    """
    if not delimiter:
        raise ValueError("delimiter must be non-empty")

    fallback: list[int] = _fallback_table(delimiter)
    last: int = len(delimiter) - 1
    buffer: list[str] = []
    cursor: int = 0

    while True:
        chunk: str = stream.read(chunk_size)
        if not chunk:
            break
        for char in chunk:
            buffer.append(char)
            while cursor > 0 and char != delimiter[cursor]:
                cursor = fallback[cursor - 1]
            if char != delimiter[cursor]:
                continue
            if cursor == last:
                del buffer[-len(delimiter):]
                yield "".join(buffer)
                buffer.clear()
                cursor = 0
            else:
                cursor += 1

    if buffer:
        yield "".join(buffer)


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class ReplayFrameSource(FrameSource):
    """Frame source replaying captured sessions from files.

    Emits a ``CONNECTED`` control frame before the first record and a
    ``DISCONNECTED`` control frame after the last one, then one ``DATA``
    frame per record.

    Args:
        config: Replay configuration.
    """

    def __init__(self, config: ReplayConfig) -> None:
        super().__init__(name=config.name)
        self._config: ReplayConfig = config
        self._started: bool = False
        self._running: bool = False
        self._records_replayed: int = 0

    @property
    def config(self) -> ReplayConfig:
        return self._config

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def records_replayed(self) -> int:
        """Records emitted by the last ``start()``."""
        return self._records_replayed

    def start(self) -> None:
        """Replay every configured file, synchronously, in order.

        Raises:
            ReplayConfigurationError: If the configuration is incomplete
                or a file cannot be read. Raised before any frame.
            RuntimeError: If a replay is already in progress.
        """
        if self._running:
            raise RuntimeError(f"Replay {self.name} is already running")

        paths: list[Path] = self._validated_paths()
        delimiter: str = self._config.delimiter  # type: ignore[assignment]

        self._started = True
        self._running = True
        self._records_replayed = 0
        logger.info("Replay %s started (%d files)", self.name, len(paths))
        try:
            self._emit_control(ControlSignal.CONNECTED)
            for path in paths:
                with path.open("r", encoding=self._config.encoding, newline="") as stream:
                    for record in iter_records(stream, delimiter, self._config.chunk_size):
                        self._records_replayed += 1
                        self._emit_text(record)
                logger.debug("Replay %s finished file %s", self.name, path)
            self._emit_control(ControlSignal.DISCONNECTED)
        finally:
            self._running = False

        logger.info(
            "Replay %s completed (%d records)",
            self.name,
            self._records_replayed,
        )

    def stop(self) -> bool:
        self._started = False
        return True

    def send(self, text: str) -> None:
        logger.debug("Replay %s ignoring outbound message", self.name)

    def _validated_paths(self) -> list[Path]:
        if not self._config.file_names:
            raise ReplayConfigurationError(
                "file_names are not set, provide at least one path to historical data"
            )
        if not self._config.delimiter:
            raise ReplayConfigurationError(
                "delimiter is not set (separator between messages in the file)"
            )
        try:
            codecs.lookup(self._config.encoding)
        except LookupError as exc:
            raise ReplayConfigurationError(
                f"Unknown encoding: {self._config.encoding}"
            ) from exc

        paths: list[Path] = list(self._config.file_names)
        for path in paths:
            if not path.is_file():
                raise ReplayConfigurationError(f"Replay file not found: {path}")
            if not os.access(path, os.R_OK):
                raise ReplayConfigurationError(f"Replay file not readable: {path}")
            self._check_decodable(path)
        return paths

    def _check_decodable(self, path: Path) -> None:
        """Decode ``path`` end to end so no replay starts on a bad file."""
        try:
            with path.open("r", encoding=self._config.encoding, newline="") as stream:
                while stream.read(self._config.chunk_size):
                    pass
        except UnicodeDecodeError as exc:
            raise ReplayConfigurationError(
                f"Replay file {path} is not valid {self._config.encoding}: {exc}"
            ) from exc
        except OSError as exc:
            raise ReplayConfigurationError(f"Replay file not readable: {path}") from exc
