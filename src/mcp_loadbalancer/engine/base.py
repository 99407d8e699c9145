"""Base abstraction for configuration engine runners."""
import logging
import re
import shlex
from abc import ABC, abstractmethod

from ..configuration.errors import ConfError, EngineError, NotFoundError

logger = logging.getLogger(__name__)

# Engine messages meaning the addressed object does not exist
NOT_FOUND_PATTERN = re.compile(r"not found|does not exist|no such|unknown (object|entry)", re.I)


class EngineRunner(ABC):
    """Runs engine commands: ``<binary> [-t <transaction>] <command> <args...>``."""

    def __init__(self, binary: str = "lbctl", timeout: float = 30):
        self.binary = binary
        self.timeout = timeout

    def build_command(self, command: str, transaction_id: str, args: tuple[str, ...]) -> list[str]:
        argv = [self.binary]
        if transaction_id:
            argv += ["-t", transaction_id]
        argv.append(command)
        argv.extend(str(a) for a in args)
        return argv

    def failure(self, argv: list[str], exit_code: int, output: str) -> ConfError:
        """Build the error for a command that exited non-zero."""
        line = shlex.join(argv)
        message = f"'{line}' failed (exit {exit_code}): {output.strip()}"
        logger.debug(message)
        if NOT_FOUND_PATTERN.search(output):
            return NotFoundError(output.strip() or message)
        return EngineError(message, command=line, exit_code=exit_code, output=output)

    @abstractmethod
    async def run(self, command: str, transaction_id: str = "", *args: str) -> str:
        """Run an engine command and return its standard output.

        Raises:
            NotFoundError: If the engine reports a missing object
            EngineError: On any other failure
        """

    async def close(self) -> None:
        """Release any connection held by the runner."""
