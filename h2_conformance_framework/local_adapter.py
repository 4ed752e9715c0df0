"""
Local SUT launcher

Runs an HTTP/2 server from a script for the duration of a run. The server
counts as ready once it completes the connection preface and SETTINGS
exchange, not merely when its port accepts TCP connections.
"""

import os
import signal
import socket
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional

from .config import RunConfig
from .errors import ConnectSetupError
from .session import Session

POLL_INTERVAL = 0.25
PROBE_TIMEOUT = 1.0
STDERR_TAIL_BYTES = 2048


def probe_h2(host: str, port: int, secure: bool = False,
             timeout: float = PROBE_TIMEOUT) -> bool:
    """True when host:port answers the client preface with a SETTINGS exchange"""
    try:
        with Session.open(RunConfig(host=host, port=port, secure=secure, timeout=timeout)):
            return True
    except ConnectSetupError:
        return False


class LocalServerAdapter:
    """
    An HTTP/2 server process owned by one run

    The script is started in its own session so the whole process tree can be
    signalled on stop. Its stderr is captured to a temporary file and only
    read back to explain a failed start.
    """

    def __init__(self, config: Dict):
        """
        Args:
            config: Local target configuration (script_path, args, host, port,
                tls, name, version)

        Raises:
            FileNotFoundError: script_path does not exist
            PermissionError: script_path is not executable
        """
        self.name = config.get('name', 'local')
        self.version = config.get('version', '')
        self.host = config.get('host', '127.0.0.1')
        self.port = int(config['port'])
        self.secure = bool(config.get('tls', False))
        self.script_path = Path(config['script_path'])
        self.args: List[str] = [str(a) for a in config.get('args', [])]

        self.process: Optional[subprocess.Popen] = None
        self._stderr = None

        if not self.script_path.exists():
            raise FileNotFoundError(f"Script not found: {self.script_path}")
        if not os.access(self.script_path, os.X_OK):
            raise PermissionError(f"Script not executable: {self.script_path}")

    @property
    def command(self) -> List[str]:
        return [str(self.script_path)] + self.args

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start_server(self, timeout: float = 10) -> bool:
        """
        Launch the script and wait until it speaks HTTP/2

        Args:
            timeout: Seconds to wait for readiness

        Returns:
            True once the server completed a SETTINGS exchange

        Raises:
            RuntimeError: The script could not be run, exited, or never became ready
        """
        print(f"[LocalAdapter] Starting {self.name} {self.version}: {' '.join(self.command)}")

        self._stderr = tempfile.TemporaryFile()
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr,
                start_new_session=True,
                cwd=self.script_path.parent
            )
        except OSError as e:
            self._release_stderr()
            raise RuntimeError(f"Failed to start server: {e}") from e

        try:
            self.wait_ready(timeout)
        except RuntimeError:
            self.stop()
            raise

        print(f"[LocalAdapter] {self.name} ready on {self.host}:{self.port}")
        return True

    def wait_ready(self, timeout: float):
        """Probe until the handshake succeeds; RuntimeError on exit or timeout"""
        deadline = time.monotonic() + timeout
        while True:
            code = self.process.poll()
            if code is not None:
                raise RuntimeError(f"Server exited with code {code} before becoming ready\n"
                                   f"stderr: {self.stderr_tail()}")
            if probe_h2(self.host, self.port, self.secure):
                return
            if time.monotonic() >= deadline:
                raise RuntimeError(f"Server did not become ready on {self.host}:{self.port} "
                                   f"within {timeout}s\nstderr: {self.stderr_tail()}")
            time.sleep(POLL_INTERVAL)

    def is_ready(self) -> bool:
        return self.running and probe_h2(self.host, self.port, self.secure)

    def stderr_tail(self) -> str:
        """Last bytes the server wrote to stderr"""
        if self._stderr is None:
            return ''
        fd = self._stderr.fileno()
        size = os.fstat(fd).st_size
        # pread leaves the offset shared with the child untouched
        data = os.pread(fd, STDERR_TAIL_BYTES, max(0, size - STDERR_TAIL_BYTES))
        return data.decode('utf-8', errors='replace').strip()

    def stop(self, timeout: float = 5):
        """SIGTERM the process group, SIGKILL it if it outlives timeout"""
        if self.process is None:
            return
        try:
            if self.process.poll() is None:
                print(f"[LocalAdapter] Stopping {self.name} (PID: {self.process.pid})")
                self._signal_group(signal.SIGTERM)
                try:
                    self.process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    print(f"[LocalAdapter] {self.name} ignored SIGTERM, killing")
                    self._signal_group(signal.SIGKILL)
                    self.process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            print(f"[LocalAdapter] PID {self.process.pid} survived SIGKILL")
        finally:
            self.process = None
            self._release_stderr()

    def _signal_group(self, sig: int):
        try:
            # start_new_session makes the child its own group leader
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            pass

    def _release_stderr(self):
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    def __repr__(self):
        status = "running" if self.running else "stopped"
        return f"<LocalServerAdapter {self.name} {self.version} [{status}]>"


def ensure_port_available(port: int, host: str = '127.0.0.1', timeout: float = 5) -> bool:
    """
    Wait until the port can be bound, i.e. a previous server released it

    Returns:
        True when the port is free, False after timeout
    """
    deadline = time.monotonic() + timeout
    while True:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((host, port))
                return True
            except OSError:
                pass
        if time.monotonic() >= deadline:
            print(f"[LocalAdapter] Port {port} still in use after {timeout}s")
            return False
        time.sleep(POLL_INTERVAL)
