"""Byte-by-byte duplication of one child stream to several sinks."""

from __future__ import annotations

import codecs
import io
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Anything that accepts writes and can be flushed."""

    def write(self, data: Any, /) -> object: ...

    def flush(self) -> None: ...


class ByteSource(Protocol):
    def read(self, size: int = -1, /) -> bytes | None: ...


class _SinkWriter:
    """Adapts one sink so it can be fed raw bytes.

    Text sinks get their bytes through an incremental decoder so multibyte
    characters arriving one byte at a time are never split. The first
    exception a sink raises is kept on `error` and the sink receives nothing
    further, not even the final flush.
    """

    __slots__ = ("_decoder", "error", "sink")

    def __init__(self, sink: Sink) -> None:
        self.sink = sink
        self.error: Exception | None = None
        self._decoder = (
            codecs.getincrementaldecoder("utf-8")(errors="replace")
            if isinstance(sink, io.TextIOBase)
            else None
        )

    def write(self, data: bytes) -> None:
        if self.error is not None:
            return
        try:
            if self._decoder is None:
                self.sink.write(data)
                return
            text = self._decoder.decode(data)
            if text:
                self.sink.write(text)
        except Exception as exc:
            self.error = exc

    def finish(self) -> None:
        if self.error is not None:
            return
        try:
            if self._decoder is not None:
                tail = self._decoder.decode(b"", final=True)
                if tail:
                    self.sink.write(tail)
            self.sink.flush()
        except Exception as exc:
            self.error = exc


def _copy(source: ByteSource, writers: Sequence[_SinkWriter]) -> int:
    copied = 0
    while True:
        byte = source.read(1)
        if not byte:
            break
        for writer in writers:
            writer.write(byte)
        copied += 1
    for writer in writers:
        writer.finish()
    return copied


def _first_failure(writers: Sequence[_SinkWriter]) -> Exception | None:
    return next((writer.error for writer in writers if writer.error is not None), None)


def multiplex_stream(source: ByteSource, sinks: Sequence[Sink]) -> int:
    """Copy `source` to every sink until end-of-stream and return the byte count.

    Reading is done one byte at a time so that, when stdout and stderr are
    copied by two threads onto the same terminal, neither copy races far
    ahead of the other. There is still no ordering guarantee between the two
    streams: a child writing rapidly to both may show either one "ahead".
    Every healthy sink is flushed exactly once, in order, after end-of-stream.

    A sink that raises is dropped while the others keep receiving the whole
    stream; the first such exception is raised once the stream is exhausted.
    """

    writers = [_SinkWriter(sink) for sink in sinks]
    copied = _copy(source, writers)
    failure = _first_failure(writers)
    if failure is not None:
        raise failure
    return copied


class StreamMultiplexer:
    """Thread target that copies one child stream and remembers the outcome.

    Sink failures never stop the copy (see `multiplex_stream`); the child's
    pipe is always read to end-of-stream so it never blocks on a full pipe.
    The first failure is kept on `error` for the orchestrator to re-raise
    once the child has exited.
    """

    def __init__(self, name: str, source: ByteSource, sinks: Sequence[Sink]) -> None:
        self.name = name
        self._source = source
        self._sinks = tuple(sinks)
        self.bytes_copied = 0
        self.error: Exception | None = None

    @property
    def sinks(self) -> tuple[Sink, ...]:
        return self._sinks

    def run(self) -> None:
        writers = [_SinkWriter(sink) for sink in self._sinks]
        try:
            self.bytes_copied = _copy(self._source, writers)
        except (OSError, ValueError) as exc:
            self.error = exc
            logger.warning("Reading child stream failed.", stream=self.name, exc_info=exc)
            return

        failed = [writer for writer in writers if writer.error is not None]
        if not failed:
            return
        self.error = failed[0].error
        logger.warning(
            "Sink write failed; remaining sinks received the full stream.",
            stream=self.name,
            failed_sinks=len(failed),
            exc_info=self.error,
        )
