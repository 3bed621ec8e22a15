"""Unit tests for infra.replay_source module.

Covers delimiter scanning (prefixes, overlaps, chunk boundaries),
multi-file ordering, configuration errors raised before any frame,
determinism, and an end-to-end replay through FeedClient.
"""

import io
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from core.client import FeedClient
from core.frames import ControlSignal, Frame, FrameKind
from infra.replay_source import (
    ReplayConfig,
    ReplayConfigurationError,
    ReplayFrameSource,
    iter_records,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write(path: Path, text: str, encoding: str = "utf-8") -> Path:
    path.write_bytes(text.encode(encoding))
    return path


def _records(text: str, delimiter: str, chunk_size: int = 64 * 1024) -> list[str]:
    return list(iter_records(io.StringIO(text, newline=""), delimiter, chunk_size))


def _replay(paths: list[Path], delimiter: str, **kwargs: object) -> list[Frame]:
    source: ReplayFrameSource = ReplayFrameSource(
        ReplayConfig(file_names=paths, delimiter=delimiter, **kwargs)
    )
    frames: list[Frame] = []
    source.on_frame(frames.append)
    source.start()
    return frames


def _data_texts(frames: list[Frame]) -> list[str]:
    return [f.text for f in frames if f.kind is FrameKind.DATA]


# ---------------------------------------------------------------------------
# Delimiter Scanner Tests
# ---------------------------------------------------------------------------


class TestIterRecords:
    """Tests for the delimiter scanner."""

    def test_simple_split(self) -> None:
        assert _records("A|B|C", "|") == ["A", "B", "C"]

    def test_trailing_delimiter_has_no_empty_tail(self) -> None:
        assert _records("A|B|", "|") == ["A", "B"]

    def test_consecutive_delimiters_yield_empty_record(self) -> None:
        assert _records("A||B", "|") == ["A", "", "B"]

    def test_empty_stream(self) -> None:
        assert _records("", "|") == []

    def test_no_delimiter_present(self) -> None:
        assert _records("just one record", "\n") == ["just one record"]

    def test_partial_delimiter_kept_in_record(self) -> None:
        """A delimiter prefix that does not complete stays in the record."""
        assert _records("a#b##c", "##") == ["a#b", "c"]

    def test_multichar_delimiter(self) -> None:
        assert _records("x<EOM>y<EOM>z", "<EOM>") == ["x", "y", "z"]

    def test_overlapping_prefix_still_found(self) -> None:
        """'aab' inside 'aaab' is found after a failed partial match."""
        assert _records("1aaab2", "aab") == ["1a", "2"]

    def test_delimiter_starting_inside_partial_match(self) -> None:
        assert _records("aab", "ab") == ["a"]

    def test_self_overlapping_delimiter(self) -> None:
        assert _records("xabababy", "abab") == ["x", "aby"]

    def test_crlf_delimiter(self) -> None:
        assert _records("one\r\ntwo\r\n", "\r\n") == ["one", "two"]

    def test_chunk_boundary_inside_delimiter(self) -> None:
        """Splitting reads mid-delimiter does not change the result."""
        text: str = "alpha<EOM>beta<EOM>gamma"
        for chunk_size in (1, 2, 3, 7):
            assert _records(text, "<EOM>", chunk_size) == ["alpha", "beta", "gamma"]

    def test_empty_delimiter_rejected(self) -> None:
        with pytest.raises(ValueError):
            _records("abc", "")


# ---------------------------------------------------------------------------
# Configuration Tests
# ---------------------------------------------------------------------------


class TestReplayConfig:
    """Tests for ReplayConfig Pydantic model."""

    def test_defaults(self) -> None:
        config: ReplayConfig = ReplayConfig()
        assert config.file_names is None
        assert config.delimiter is None
        assert config.encoding == "utf-8"
        assert config.name == "replay"

    def test_string_paths_coerced(self) -> None:
        config: ReplayConfig = ReplayConfig(file_names=["a.txt"], delimiter="\n")
        assert config.file_names == [Path("a.txt")]

    def test_assignment_validated(self) -> None:
        config: ReplayConfig = ReplayConfig()
        with pytest.raises(ValidationError):
            config.chunk_size = 0


class TestConfigurationErrors:
    """Configuration problems surface from start() before any frame."""

    def _start(self, config: ReplayConfig) -> list[Frame]:
        source: ReplayFrameSource = ReplayFrameSource(config)
        frames: list[Frame] = []
        source.on_frame(frames.append)
        with pytest.raises(ReplayConfigurationError):
            source.start()
        assert not source.is_running
        return frames

    def test_file_names_unset(self) -> None:
        assert self._start(ReplayConfig(delimiter="\n")) == []

    def test_file_names_empty(self) -> None:
        assert self._start(ReplayConfig(file_names=[], delimiter="\n")) == []

    def test_delimiter_unset(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "x")
        assert self._start(ReplayConfig(file_names=[path])) == []

    def test_delimiter_empty(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "x")
        assert self._start(ReplayConfig(file_names=[path], delimiter="")) == []

    def test_unknown_encoding(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "x")
        config: ReplayConfig = ReplayConfig(
            file_names=[path], delimiter="\n", encoding="no-such-codec"
        )
        assert self._start(config) == []

    def test_undecodable_later_file_raises_before_any_frame(
        self, tmp_path: Path
    ) -> None:
        """A bad byte in the second file prevents replay of the first one too."""
        good: Path = _write(tmp_path / "a.txt", "r1\nr2\n")
        bad: Path = tmp_path / "b.txt"
        bad.write_bytes(b"r3\n\xff\xfe\n")
        config: ReplayConfig = ReplayConfig(file_names=[good, bad], delimiter="\n")
        assert self._start(config) == []

    def test_undecodable_byte_beyond_first_chunk(self, tmp_path: Path) -> None:
        path: Path = tmp_path / "a.txt"
        path.write_bytes(b"x" * 100 + b"\n\xff")
        config: ReplayConfig = ReplayConfig(
            file_names=[path], delimiter="\n", chunk_size=8
        )
        assert self._start(config) == []

    def test_missing_file_raises_before_earlier_files_replay(
        self, tmp_path: Path
    ) -> None:
        """A missing second file prevents replay of the first one too."""
        good: Path = _write(tmp_path / "good.txt", "A\nB\n")
        config: ReplayConfig = ReplayConfig(
            file_names=[good, tmp_path / "missing.txt"], delimiter="\n"
        )
        assert self._start(config) == []

    def test_directory_rejected(self, tmp_path: Path) -> None:
        config: ReplayConfig = ReplayConfig(file_names=[tmp_path], delimiter="\n")
        assert self._start(config) == []

    def test_config_can_be_completed_after_construction(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A\nB")
        config: ReplayConfig = ReplayConfig()
        source: ReplayFrameSource = ReplayFrameSource(config)
        config.file_names = [path]
        config.delimiter = "\n"
        frames: list[Frame] = []
        source.on_frame(frames.append)
        source.start()
        assert _data_texts(frames) == ["A", "B"]


# ---------------------------------------------------------------------------
# Replay Tests
# ---------------------------------------------------------------------------


class TestReplay:
    """Tests for replaying capture files."""

    def test_records_in_order_with_control_frames(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A|B|C")
        frames: list[Frame] = _replay([path], "|")

        assert [f.kind for f in frames] == [
            FrameKind.CONTROL,
            FrameKind.DATA,
            FrameKind.DATA,
            FrameKind.DATA,
            FrameKind.CONTROL,
        ]
        assert frames[0].text == ControlSignal.CONNECTED.value
        assert frames[-1].text == ControlSignal.DISCONNECTED.value
        assert _data_texts(frames) == ["A", "B", "C"]

    def test_sequence_numbers_increase(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A\nB\n")
        frames: list[Frame] = _replay([path], "\n")
        sequences: list[int] = [f.sequence for f in frames]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)
        assert all(f.source == "replay" for f in frames)

    def test_multiple_files_in_given_order(self, tmp_path: Path) -> None:
        """Files are concatenated in list order; no record spans files."""
        second: Path = _write(tmp_path / "b.txt", "B1\nB2")
        first: Path = _write(tmp_path / "a.txt", "A1\nA2")
        frames: list[Frame] = _replay([second, first], "\n")
        assert _data_texts(frames) == ["B1", "B2", "A1", "A2"]

    def test_prefix_of_delimiter_preserved(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "x\r\ny\rz\r\n")
        frames: list[Frame] = _replay([path], "\r\n")
        assert _data_texts(frames) == ["x", "y\rz"]

    def test_encoding(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "café|naïve", "latin-1")
        frames: list[Frame] = _replay([path], "|", encoding="latin-1")
        assert _data_texts(frames) == ["café", "naïve"]

    def test_deterministic(self, tmp_path: Path) -> None:
        """Two replays of the same files emit the same texts."""
        path: Path = _write(tmp_path / "a.txt", "1\n2\n\n3")
        first: list[str] = _data_texts(_replay([path], "\n"))
        second: list[str] = _data_texts(_replay([path], "\n"))
        assert first == second == ["1", "2", "", "3"]

    def test_records_replayed_and_stats(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A\nB\nC")
        source: ReplayFrameSource = ReplayFrameSource(
            ReplayConfig(file_names=[path], delimiter="\n", name="capture")
        )
        source.start()
        assert source.records_replayed == 3
        stats: dict = source.stats()
        assert stats["name"] == "capture"
        assert stats["frames_emitted"] == 5
        assert stats["running"] is False

    def test_handler_error_does_not_stop_replay(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A\nB")
        source: ReplayFrameSource = ReplayFrameSource(
            ReplayConfig(file_names=[path], delimiter="\n")
        )
        received: list[Frame] = []

        def boom(frame: Frame) -> None:
            raise RuntimeError("handler failure")

        source.on_frame(boom)
        source.on_frame(received.append)
        source.start()

        assert _data_texts(received) == ["A", "B"]
        assert source.stats()["handler_errors"] == 4

    def test_reentrant_start_rejected(self, tmp_path: Path) -> None:
        path: Path = _write(tmp_path / "a.txt", "A")
        source: ReplayFrameSource = ReplayFrameSource(
            ReplayConfig(file_names=[path], delimiter="\n")
        )
        errors: list[Exception] = []

        def restart(frame: Frame) -> None:
            try:
                source.start()
            except RuntimeError as exc:
                errors.append(exc)

        source.on_frame(restart)
        source.start()
        assert len(errors) == 3
        assert not any(isinstance(e, ReplayConfigurationError) for e in errors)

    def test_stop_and_send_are_noops(self, tmp_path: Path) -> None:
        source: ReplayFrameSource = ReplayFrameSource(ReplayConfig())
        assert source.stop() is True
        assert source.stop() is True
        source.send("ping")
        assert not source.is_started


# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------


class TestReplayThroughClient:
    """Captured session replayed end to end into typed topics."""

    def test_session_routed_to_topics(self, tmp_path: Path) -> None:
        session: list[str] = [
            json.dumps({"info": "Welcome", "version": "2.0.0"}),
            json.dumps({"success": True, "subscribe": "trade:XBTUSD"}),
            json.dumps(
                {
                    "table": "trade",
                    "action": "insert",
                    "data": [
                        {
                            "timestamp": "2018-06-01T12:00:00.000Z",
                            "symbol": "XBTUSD",
                            "side": "Buy",
                            "size": 5,
                            "price": 7000.5,
                        },
                        {
                            "timestamp": "2018-06-01T12:00:01.000Z",
                            "symbol": "XBTUSD",
                            "side": "Sell",
                            "size": 3,
                            "price": 7000.0,
                        },
                    ],
                }
            ),
            "pong",
            "garbage",
        ]
        path: Path = _write(tmp_path / "session.txt", "\n".join(session) + "\n")
        source: ReplayFrameSource = ReplayFrameSource(
            ReplayConfig(file_names=[path], delimiter="\n")
        )

        with FeedClient(source) as client:
            trades: list = []
            pongs: list = []
            info: list = []
            client.streams.trades.subscribe(trades.append)
            client.streams.pong.subscribe(pongs.append)
            client.streams.info.subscribe(info.append)
            source.start()

            assert [t.price for t in trades] == [7000.5, 7000.0]
            assert len(pongs) == 1
            assert info[0].version == "2.0.0"
            stats = client.router.stats()
            assert stats.claimed == 4
            assert stats.unhandled == 1
            assert stats.control_frames == 2
