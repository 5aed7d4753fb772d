"""
Pipe transport to a solver subprocess

Frames are newline-delimited: each frame is one payload followed by a single
``\\n``. The solver reads requests from its stdin and writes responses to its
stdout. Its stderr is drained separately and kept for diagnostics.
"""

import collections
import logging
import os
import queue
import subprocess
import threading
from typing import Any

from optbridge.config import TransportConfig
from optbridge.exceptions import OptBridgeError, ProtocolError, SpawnError, TransportError

logger = logging.getLogger(__name__)

FRAME_DELIMITER = b"\n"

# Reader thread marker for end of stream
_EOF = object()


def _preview(payload: bytes, limit: int = 200) -> str:
    text = payload.decode("utf-8", errors="replace")
    if len(text) > limit:
        return f"{text[:limit]}... ({len(payload)} bytes)"
    return text


class Channel:
    """
    Bidirectional frame channel to exactly one solver process

    Use as a context manager (or call ``close()``) so the process and both
    pipes are released on every exit path. Only one request may be
    outstanding at a time; the session driver enforces the alternation.
    """

    def __init__(self, process: subprocess.Popen, config: TransportConfig | None = None):
        self.process = process
        self.config = config or TransportConfig()
        self._closed = False
        self._frames: queue.Queue[Any] = queue.Queue()
        self._stderr_tail: collections.deque[str] = collections.deque(
            maxlen=self.config.stderr_tail_lines
        )

        self._reader = threading.Thread(
            target=self._read_frames, name=f"optbridge-reader-{process.pid}", daemon=True
        )
        self._reader.start()

        self._stderr_reader: threading.Thread | None = None
        if process.stderr is not None:
            self._stderr_reader = threading.Thread(
                target=self._drain_stderr, name=f"optbridge-stderr-{process.pid}", daemon=True
            )
            self._stderr_reader.start()

    @classmethod
    def open(
        cls, command: list[str] | None = None, config: TransportConfig | None = None
    ) -> "Channel":
        """
        Start the solver process and wire its stdin/stdout to a new channel

        Args:
            command: argv of the solver; defaults to ``config.build_command()``
            config: transport settings

        Raises:
            SpawnError: if the executable cannot be launched
        """
        config = config or TransportConfig()
        command = list(command) if command else config.build_command()

        env = None
        if config.env:
            env = dict(os.environ)
            env.update(config.env)

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if config.capture_stderr else None,
                cwd=config.cwd,
                env=env,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Could not start solver {command!r}: {e}", command=command) from e

        logger.info(f"Started solver process (pid {process.pid}): {' '.join(command)}")
        return cls(process, config)

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.poll()

    @property
    def closed(self) -> bool:
        return self._closed

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def stderr_tail(self) -> list[str]:
        """Last lines the solver wrote to stderr"""
        return list(self._stderr_tail)

    def send(self, payload: bytes) -> None:
        """Write one frame and block until it is flushed to the solver"""
        if self._closed:
            raise TransportError("Channel is closed", direction="send")
        if FRAME_DELIMITER in payload:
            raise ProtocolError("Payload contains a frame delimiter", payload=payload)

        try:
            self.process.stdin.write(payload + FRAME_DELIMITER)
            self.process.stdin.flush()
        except (OSError, ValueError) as e:
            raise TransportError(
                f"Failed to write to solver: {e}",
                direction="send",
                returncode=self.process.poll(),
                stderr_tail=self.stderr_tail(),
            ) from e

        logger.debug(f"-> {_preview(payload)}")

    def receive(self) -> bytes:
        """
        Block until the solver sends one complete frame and return its payload

        Raises:
            TransportError: on end of stream, a broken pipe or receive timeout
            ProtocolError: on an oversized, empty or truncated frame
        """
        if self._closed:
            raise TransportError("Channel is closed", direction="receive")

        timeout = self.config.receive_timeout
        try:
            item = self._frames.get(timeout=timeout)
        except queue.Empty:
            raise TransportError(
                f"No message from solver within {timeout}s",
                direction="receive",
                returncode=self.process.poll(),
                stderr_tail=self.stderr_tail(),
            ) from None

        if item is _EOF:
            # Keep the marker so later receives fail the same way
            self._frames.put(_EOF)
            raise TransportError(
                "Solver closed its output",
                direction="receive",
                returncode=self._exit_code(),
                stderr_tail=self.stderr_tail(),
            )
        if isinstance(item, OptBridgeError):
            raise item

        logger.debug(f"<- {_preview(item)}")
        return item

    def close(self) -> None:
        """Close stdin, stop the solver (terminating it if needed) and release both pipes"""
        if self._closed:
            return
        self._closed = True

        process = self.process
        timeout = self.config.shutdown_timeout
        try:
            if process.stdin is not None and not process.stdin.closed:
                process.stdin.close()
        except OSError as e:
            logger.debug(f"Error closing solver stdin: {e}")

        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"Solver (pid {process.pid}) did not exit within {timeout}s, terminating"
            )
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Solver (pid {process.pid}) ignored terminate, killing")
                process.kill()
                process.wait()

        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()

        self._reader.join(timeout=1.0)
        if self._stderr_reader is not None:
            self._stderr_reader.join(timeout=1.0)

        logger.debug(f"Closed channel to solver (pid {process.pid}, exit code {process.returncode})")

    def _exit_code(self) -> int | None:
        try:
            return self.process.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            return None
        finally:
            if self._stderr_reader is not None:
                self._stderr_reader.join(timeout=1.0)

    def _read_frames(self) -> None:
        """Reader thread: split stdout into frames and queue them for receive()"""
        stream = self.process.stdout
        limit = self.config.max_frame_bytes
        try:
            while True:
                line = stream.readline(limit + 1)
                if not line:
                    self._frames.put(_EOF)
                    return

                if not line.endswith(FRAME_DELIMITER):
                    if len(line) > limit:
                        self._frames.put(
                            ProtocolError(
                                f"Frame exceeds {limit} bytes", payload=line[:200]
                            )
                        )
                    else:
                        self._frames.put(
                            ProtocolError("Truncated frame at end of stream", payload=line)
                        )
                    return

                payload = line[:-1]
                if payload.endswith(b"\r"):
                    payload = payload[:-1]
                if not payload:
                    self._frames.put(ProtocolError("Empty frame from solver", payload=line))
                    continue
                self._frames.put(payload)
        except (OSError, ValueError) as e:
            self._frames.put(
                TransportError(f"Failed to read from solver: {e}", direction="receive")
            )

    def _drain_stderr(self) -> None:
        """stderr thread: keep a tail of the solver's diagnostics"""
        try:
            for raw in iter(self.process.stderr.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                self._stderr_tail.append(line)
                logger.debug(f"[solver {self.process.pid}] {line}")
        except (OSError, ValueError):
            # stream closed by close()
            return


def open_channel(command: list[str] | None = None, config: TransportConfig | None = None) -> Channel:
    """Start a solver process and return a channel to it"""
    return Channel.open(command, config)
