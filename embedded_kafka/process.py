"""
Child process management for the ZooKeeper and Kafka services.

The start scripts exec into a JVM, but they can also fork helpers, so
stopping always walks the whole process tree: SIGTERM first, SIGKILL for
anything still alive after the grace period.
"""

import logging
import os
import subprocess
import time
from typing import List, Mapping, Optional

import psutil

from embedded_kafka.errors import IllegalStateError

logger = logging.getLogger(__name__)


class ServiceProcess:
    """One long-running service started from a command line."""

    def __init__(self, name: str, command: List[str], log_path: str,
                 env: Optional[Mapping[str, str]] = None):
        self.name = name
        self.command = list(command)
        self.log_path = log_path
        self.env = dict(env) if env is not None else None
        self._process: Optional[subprocess.Popen] = None
        self._log_file = None
        self._children: List[psutil.Process] = []

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll() if self._process else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self.is_alive:
            raise IllegalStateError(f"{self.name} is already running with PID {self.pid}")

        os.makedirs(os.path.dirname(self.log_path), exist_ok=True)
        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        logger.info(f"Starting {self.name}: {' '.join(self.command)}")
        self._log_file = open(self.log_path, "w")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdout=self._log_file,
                stderr=subprocess.STDOUT,
                env=env,
                start_new_session=True,
            )
        except OSError:
            self._close_log()
            raise
        logger.info(f"{self.name} started with PID {self._process.pid}, output in {self.log_path}")

    def terminate(self) -> None:
        """Send SIGTERM to the process and its children without waiting."""
        if self._process is None or self._process.poll() is not None:
            return
        try:
            self._children = psutil.Process(self._process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            self._children = []

        logger.info(f"Stopping {self.name} gracefully (SIGTERM)")
        self._process.terminate()
        for proc in self._children:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

    def wait(self, timeout_s: float) -> Optional[int]:
        """Wait for the tree to exit, SIGKILL survivors. Returns the exit code."""
        if self._process is None:
            return None

        # The root is reaped through Popen so its exit code is kept.
        deadline = time.monotonic() + timeout_s
        try:
            try:
                code = self._process.wait(timeout=timeout_s)
            except subprocess.TimeoutExpired:
                logger.warning(f"{self.name} did not stop within {timeout_s}s, forcing (SIGKILL)")
                self._process.kill()
                code = self._process.wait()

            _, alive = psutil.wait_procs(self._children, timeout=max(0.0, deadline - time.monotonic()))
            for proc in alive:
                logger.warning(f"Killing leftover {self.name} child process {proc.pid}")
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
            psutil.wait_procs(alive, timeout=5)
        finally:
            self._children = []
            self._close_log()

        logger.info(f"{self.name} stopped with exit code {code}")
        return code

    def stop(self, timeout_s: float) -> Optional[int]:
        self.terminate()
        return self.wait(timeout_s)

    def _close_log(self):
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def __repr__(self):
        return f"ServiceProcess({self.name!r}, pid={self.pid}, alive={self.is_alive})"
