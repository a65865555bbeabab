# Author: PB & Claude
# Maintainer: PB
# Original date: 2025-06-22
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/lvmrestic/core/pipeline.py

"""
Streaming transfer pipeline.

A pipeline is an optional in-process FileSource, one or more CommandStages
connected by OS pipes, and an optional in-process FileSink. Without a sink the
text output of the last command is handed line by line to an output callback
(the transcript).

Failure handling:
- the first failing stage terminates every other stage, so no writer stays
  blocked on a pipe nobody reads
- a failing source kills the downstream stages before closing their input,
  so a truncated stream is never committed by the repository
- cancellation is observed by the supervisor loop and the pumps

Child processes run in their own session: an interrupt reaches them only
through the cancellation token.
"""

import os
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

from loguru import logger

from lvmrestic.core.cancellation import CancellationToken
from lvmrestic.system.exceptions import TransferFailure, InterruptSignal

CHUNK_SIZE = 4 * 1024 * 1024
STDERR_TAIL_LINES = 20
TERMINATE_TIMEOUT = 5.0


@dataclass
class FileSource:
    """Raw byte read of a file or block device."""
    path: str
    chunk_size: int = CHUNK_SIZE

    @property
    def label(self) -> str:
        return f"read {self.path}"


@dataclass
class CommandStage:
    """External process reading stdin and writing stdout."""
    argv: list[str]
    env: Optional[dict[str, str]] = field(default=None, repr=False)
    cwd: Optional[str] = None

    @property
    def label(self) -> str:
        return self.argv[0]


@dataclass
class FileSink:
    """Raw byte write to a file or block device."""
    path: str
    chunk_size: int = CHUNK_SIZE

    @property
    def label(self) -> str:
        return f"write {self.path}"


Stage = Union[FileSource, CommandStage, FileSink]


@dataclass
class PipelineResult:
    """Byte counts and exit codes of a finished pipeline."""
    bytes_read: int = 0
    bytes_written: int = 0
    returncodes: list[int] = field(default_factory=list)
    duration: float = 0.0


class TransferPipeline:
    """Compose source, processing stages and sink into one streaming path."""

    def __init__(
        self,
        stages: Sequence[Stage],
        token: Optional[CancellationToken] = None,
        output: Optional[Callable[[str], None]] = None,
        progress: Optional[Callable[[int], None]] = None,
        poll_interval: float = 0.1,
    ) -> None:
        stages = list(stages)
        self.source: Optional[FileSource] = None
        self.sink: Optional[FileSink] = None
        if stages and isinstance(stages[0], FileSource):
            self.source = stages.pop(0)
        if stages and isinstance(stages[-1], FileSink):
            self.sink = stages.pop()
        if not stages or not all(isinstance(stage, CommandStage) for stage in stages):
            raise ValueError("A pipeline needs at least one command stage between source and sink")

        self.commands: list[CommandStage] = stages
        self.token = token or CancellationToken()
        self.output = output
        self.progress = progress
        self.poll_interval = poll_interval

        self._procs: list[subprocess.Popen] = []
        self._stderr_tails: list[deque] = []
        self._errors: list[str] = []
        self._lock = threading.Lock()
        self._terminated = False
        self._bytes_read = 0
        self._bytes_written = 0

    def describe(self) -> str:
        parts = [stage.label for stage in self.stages]
        return " | ".join(parts)

    @property
    def stages(self) -> list[Stage]:
        stages: list[Stage] = []
        if self.source:
            stages.append(self.source)
        stages.extend(self.commands)
        if self.sink:
            stages.append(self.sink)
        return stages

    # ---- Public API ----

    def run(self) -> PipelineResult:
        """Run the pipeline to completion.

        Raises:
            TransferFailure: If any stage failed
            InterruptSignal: If the token was cancelled before completion
        """
        self.token.raise_if_cancelled()
        logger.debug(f"Starting pipeline: {self.describe()}")
        start = time.monotonic()

        try:
            self._start_processes()
        except OSError as e:
            self._terminate()
            raise TransferFailure("Could not start transfer", [str(e)]) from e

        threads = []
        if self.source:
            threads.append(threading.Thread(target=self._pump_source, name="pipeline-source", daemon=True))
        if self.sink:
            threads.append(threading.Thread(target=self._pump_sink, name="pipeline-sink", daemon=True))
        else:
            threads.append(threading.Thread(target=self._pump_output, name="pipeline-output", daemon=True))
        for index, proc in enumerate(self._procs):
            threads.append(threading.Thread(target=self._drain_stderr, args=(index, proc),
                                            name=f"pipeline-stderr-{index}", daemon=True))
        for thread in threads:
            thread.start()

        self._supervise(threads)

        for thread in threads:
            thread.join()
        returncodes = [self._wait(proc) for proc in self._procs]

        result = PipelineResult(
            bytes_read=self._bytes_read,
            bytes_written=self._bytes_written,
            returncodes=returncodes,
            duration=time.monotonic() - start,
        )

        if self.token.cancelled:
            raise InterruptSignal()

        failures = list(self._errors)
        for stage, proc, tail in zip(self.commands, self._procs, self._stderr_tails):
            if proc.returncode != 0:
                detail = tail[-1] if tail else ""
                message = f"{stage.label} exited with {proc.returncode}"
                failures.append(f"{message}: {detail}" if detail else message)
        if failures:
            raise TransferFailure(f"Transfer failed: {self.describe()}", failures)

        logger.debug(f"Pipeline finished in {result.duration:.1f}s "
                     f"({result.bytes_read} bytes read, {result.bytes_written} bytes written)")
        return result

    # ---- Process management ----

    def _start_processes(self) -> None:
        previous_stdout = None
        for index, stage in enumerate(self.commands):
            if index == 0:
                stdin = subprocess.PIPE if self.source else subprocess.DEVNULL
            else:
                stdin = previous_stdout
            proc = subprocess.Popen(
                stage.argv,
                stdin=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=stage.env,
                cwd=stage.cwd,
                start_new_session=True,
            )
            if previous_stdout is not None:
                # the child owns its copy now; ours would keep the pipe open
                previous_stdout.close()
            previous_stdout = proc.stdout
            self._procs.append(proc)
            self._stderr_tails.append(deque(maxlen=STDERR_TAIL_LINES))

    def _record_error(self, message: str) -> None:
        with self._lock:
            self._errors.append(message)
        logger.debug(f"Pipeline stage error: {message}")

    def _has_failure(self) -> bool:
        with self._lock:
            if self._errors:
                return True
        return any(proc.poll() not in (None, 0) for proc in self._procs)

    @staticmethod
    def _signal_group(proc: subprocess.Popen, signum: int) -> None:
        # every stage leads its own session, so its pid is its process group
        try:
            os.killpg(proc.pid, signum)
        except ProcessLookupError:
            pass

    def _terminate(self) -> None:
        """Stop every stage and anything it spawned; idempotent."""
        with self._lock:
            if self._terminated:
                return
            self._terminated = True
        for proc in self._procs:
            if proc.poll() is None:
                self._signal_group(proc, signal.SIGTERM)
        for proc in self._procs:
            try:
                proc.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                self._signal_group(proc, signal.SIGKILL)

    def _wait(self, proc: subprocess.Popen) -> int:
        try:
            return proc.wait(timeout=TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            proc.kill()
            return proc.wait()

    def _supervise(self, threads: list[threading.Thread]) -> None:
        while True:
            if self.token.cancelled or self._has_failure():
                self._terminate()
                return
            io_done = not any(thread.is_alive() for thread in threads)
            if io_done and all(proc.poll() is not None for proc in self._procs):
                return
            self.token.wait(self.poll_interval)

    # ---- Pumps ----

    def _pump_source(self) -> None:
        stdin = self._procs[0].stdin
        try:
            with open(self.source.path, "rb") as src:
                while not self.token.cancelled:
                    try:
                        chunk = src.read(self.source.chunk_size)
                    except OSError as e:
                        self._record_error(f"{self.source.label}: {e}")
                        # downstream must never see a clean end of a truncated stream
                        self._terminate()
                        return
                    if not chunk:
                        break
                    stdin.write(chunk)
                    self._bytes_read += len(chunk)
            if self.token.cancelled:
                self._terminate()
        except BrokenPipeError:
            self._record_error(f"{self.source.label}: downstream stage stopped reading")
        except OSError as e:
            self._record_error(f"{self.source.label}: {e}")
            self._terminate()
        finally:
            try:
                stdin.close()
            except OSError:
                pass

    def _pump_sink(self) -> None:
        stdout = self._procs[-1].stdout
        try:
            with open(self.sink.path, "wb") as dst:
                while not self.token.cancelled:
                    chunk = stdout.read(self.sink.chunk_size)
                    if not chunk:
                        break
                    dst.write(chunk)
                    self._bytes_written += len(chunk)
                    if self.progress:
                        self.progress(len(chunk))
                dst.flush()
                os.fsync(dst.fileno())
        except OSError as e:
            self._record_error(f"{self.sink.label}: {e}")
        finally:
            stdout.close()

    def _pump_output(self) -> None:
        stdout = self._procs[-1].stdout
        try:
            for raw in stdout:
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if self.output:
                    self.output(line)
        except (OSError, ValueError) as e:
            self._record_error(f"{self.commands[-1].label} output: {e}")
        finally:
            stdout.close()

    def _drain_stderr(self, index: int, proc: subprocess.Popen) -> None:
        label = self.commands[index].label
        for raw in proc.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                self._stderr_tails[index].append(line)
                logger.debug(f"[{label}] {line}")
        proc.stderr.close()
