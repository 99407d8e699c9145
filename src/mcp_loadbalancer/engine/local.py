"""Engine runner for an lbctl binary on the local host."""
import asyncio
import logging

from ..configuration.errors import EngineError
from ..utils.logging_config import timed
from .base import EngineRunner

logger = logging.getLogger(__name__)


class LocalEngineRunner(EngineRunner):
    """Run engine commands as local subprocesses."""

    @timed("engine")
    async def run(self, command: str, transaction_id: str = "", *args: str) -> str:
        argv = self.build_command(command, transaction_id, args)
        logger.debug(f"Running: {' '.join(argv)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineError(f"Cannot run {self.binary}: {e}", command=command) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise EngineError(
                f"'{command}' timed out after {self.timeout}s", command=command
            ) from e

        out = stdout.decode("utf-8", errors="ignore")
        err = stderr.decode("utf-8", errors="ignore")
        if proc.returncode != 0:
            raise self.failure(argv, proc.returncode, f"{out}\n{err}".strip())
        return out
