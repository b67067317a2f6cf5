"""Local process launcher: runs shell commands on the host in their own process group."""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from tools.errors import ProcessSpawnError

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL when killing a process group
KILL_GRACE_SECONDS = 1.0


def default_shell() -> str:
    """bash when available, otherwise POSIX sh."""
    return shutil.which("bash") or "/bin/sh"


@dataclass
class ProcessHandle:
    """A launched shell process. Owned by exactly one session while it runs."""
    proc: subprocess.Popen
    command: str
    cwd: str
    elevated: bool = False
    started_at: float = 0.0
    _kill_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _killed: bool = field(default=False, repr=False)

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def killed(self) -> bool:
        return self._killed

    def poll(self) -> Optional[int]:
        return self.proc.poll()

    def iter_output(self) -> Iterator[bytes]:
        """Yield raw merged stdout/stderr chunks, one line at a time, until EOF."""
        stream = self.proc.stdout
        if stream is None:
            return
        try:
            for chunk in iter(stream.readline, b""):
                yield chunk
        except (OSError, ValueError) as e:
            logger.debug("Output stream for pid %s closed: %s", self.pid, e)
        finally:
            try:
                stream.close()
            except OSError:
                pass


class LocalEnvironment:
    """Spawn commands directly on the host machine.

    Features:
    - ``<shell> -c <command>`` so sequencing and redirection work as typed
    - stdout and stderr merged into one pipe, preserving emission order
    - each command leads its own session/process group so kill() reaches
      every child the shell started
    - elevated mode through ``sudo -n`` (``sudo -S`` with SUDO_PASSWORD)
    """

    def __init__(self, cwd: str = "", shell: str = "", env: Optional[Dict[str, str]] = None):
        self.cwd = cwd or os.getcwd()
        self.shell = shell or default_shell()
        self.env = dict(env or {})

    def _build_argv(self, command: str, elevated: bool) -> list:
        argv = [self.shell, "-c", command]
        if not elevated:
            return argv
        if os.getenv("SUDO_PASSWORD"):
            return ["sudo", "-S", "-p", "", "--"] + argv
        return ["sudo", "-n", "--"] + argv

    def spawn(
        self,
        command: str,
        *,
        cwd: str = "",
        env: Optional[Dict[str, str]] = None,
        elevated: bool = False,
    ) -> ProcessHandle:
        """Start ``command`` and return its handle. Raises ProcessSpawnError."""
        work_dir = cwd or self.cwd or os.getcwd()
        merged_env = os.environ | self.env | {str(k): str(v) for k, v in (env or {}).items()}
        argv = self._build_argv(command, elevated)

        try:
            proc = subprocess.Popen(
                argv,
                cwd=work_dir,
                env=merged_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessSpawnError(
                f"Failed to start command: {e}", command=command, cause=e
            ) from e

        if elevated and os.getenv("SUDO_PASSWORD"):
            try:
                proc.stdin.write((os.environ["SUDO_PASSWORD"] + "\n").encode())
                proc.stdin.flush()
            except (BrokenPipeError, OSError) as e:
                logger.debug("Could not pass sudo password to pid %s: %s", proc.pid, e)

        logger.debug("Spawned pid %s (elevated=%s): %s", proc.pid, elevated, command[:120])
        return ProcessHandle(
            proc=proc,
            command=command,
            cwd=work_dir,
            elevated=elevated,
            started_at=time.time(),
        )

    @staticmethod
    def wait(handle: ProcessHandle, timeout: Optional[float] = None) -> int:
        """Block until the process exits. Raises subprocess.TimeoutExpired."""
        return handle.proc.wait(timeout=timeout)

    @staticmethod
    def kill(handle: ProcessHandle) -> None:
        """Terminate the process group. Safe to call repeatedly or after exit."""
        with handle._kill_lock:
            if handle.proc.poll() is not None:
                return
            handle._killed = True
            try:
                pgid = os.getpgid(handle.proc.pid)
                os.killpg(pgid, signal.SIGTERM)
                try:
                    handle.proc.wait(timeout=KILL_GRACE_SECONDS)
                except subprocess.TimeoutExpired:
                    os.killpg(pgid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                try:
                    handle.proc.kill()
                except (ProcessLookupError, PermissionError) as e:
                    logger.warning("Could not kill pid %s: %s", handle.proc.pid, e)

    @staticmethod
    def write_stdin(handle: ProcessHandle, data: str, eof: bool = False) -> int:
        """Send text to the process's stdin. Returns the number of bytes written."""
        stream = handle.proc.stdin
        if stream is None or stream.closed:
            raise BrokenPipeError("stdin is closed")
        payload = data.encode("utf-8")
        if payload:
            stream.write(payload)
            stream.flush()
        if eof:
            stream.close()
        return len(payload)

    @staticmethod
    def release(handle: ProcessHandle, close_output: bool = True) -> None:
        """Close the pipes a finished process still holds.

        Pass ``close_output=False`` while a reader thread is still blocked on
        stdout; it closes the stream when it reaches EOF.
        """
        streams = [handle.proc.stdin]
        if close_output:
            streams.append(handle.proc.stdout)
        for stream in streams:
            if stream is None:
                continue
            try:
                stream.close()
            except OSError:
                pass
