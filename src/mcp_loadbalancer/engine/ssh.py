"""Engine runner for an lbctl binary on a remote appliance, over SSH."""
import asyncio
import logging
import shlex
import threading
from typing import Optional

import paramiko

from ..config.settings import EngineSettings
from ..configuration.errors import EngineError
from ..utils.connection import with_retry, RETRYABLE_EXCEPTIONS
from ..utils.logging_config import timed
from .base import EngineRunner

logger = logging.getLogger(__name__)

SSH_RETRYABLE = RETRYABLE_EXCEPTIONS + (paramiko.SSHException,)


class SSHEngineRunner(EngineRunner):
    """Run engine commands through one shared SSH connection."""

    def __init__(self, settings: EngineSettings):
        super().__init__(binary=settings.binary, timeout=settings.timeout)
        if not settings.host:
            raise ValueError("SSH engine mode requires engine.host")
        self.settings = settings
        self._ssh: Optional[paramiko.SSHClient] = None
        self._connect_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        if self._ssh is None:
            return False
        transport = self._ssh.get_transport()
        return transport is not None and transport.is_active()

    def _connect(self) -> paramiko.SSHClient:
        with self._connect_lock:
            if self.is_connected:
                return self._ssh
            logger.info(f"Connecting to engine host {self.settings.host}")
            ssh = paramiko.SSHClient()
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            ssh.connect(
                hostname=self.settings.host,
                port=self.settings.port,
                username=self.settings.username,
                password=self.settings.get_password(),
                timeout=self.settings.timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            self._ssh = ssh
            return ssh

    @timed("engine")
    async def run(self, command: str, transaction_id: str = "", *args: str) -> str:
        argv = self.build_command(command, transaction_id, args)
        line = shlex.join(argv)
        exit_code, out, err = await self._exec(line)
        if exit_code != 0:
            raise self.failure(argv, exit_code, f"{out}\n{err}".strip())
        return out

    async def _exec(self, line: str) -> tuple[int, str, str]:
        @with_retry(
            max_attempts=self.settings.retries,
            min_wait=1,
            max_wait=10,
            exceptions=SSH_RETRYABLE,
        )
        def _connect_with_retry() -> paramiko.SSHClient:
            return self._connect()

        def _exec_once() -> tuple[int, str, str]:
            ssh = _connect_with_retry()
            try:
                stdin, stdout, stderr = ssh.exec_command(line, timeout=self.timeout)
                out = stdout.read().decode("utf-8", errors="ignore")
                err = stderr.read().decode("utf-8", errors="ignore")
                return stdout.channel.recv_exit_status(), out, err
            except SSH_RETRYABLE as e:
                # The command may already have run, so it is never sent twice
                self._disconnect()
                raise EngineError(
                    f"Lost engine host {self.settings.host} while running command: {e}",
                    command=line,
                ) from e

        logger.debug(f"Running on {self.settings.host}: {line}")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, _exec_once)
        except SSH_RETRYABLE as e:
            raise EngineError(f"Engine host {self.settings.host} unreachable: {e}", command=line) from e

    def _disconnect(self) -> None:
        with self._connect_lock:
            if self._ssh is not None:
                self._ssh.close()
                self._ssh = None

    async def close(self) -> None:
        self._disconnect()
        logger.info(f"Disconnected from engine host {self.settings.host}")
