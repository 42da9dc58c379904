"""
External command execution.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

LOG = logging.getLogger(__name__)

# Shell conventions for "command not found" and "timed out".
RC_NOT_FOUND = 127
RC_TIMEOUT = 124


@dataclass
class CommandResult:
    cmd: List[str]
    returncode: int
    output: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run_command(cmd: List[str], timeout: Optional[float] = None) -> CommandResult:
    """
    Run an external command and capture its combined output.

    Args:
        cmd: Command argv
        timeout: Seconds to wait before giving up (None or 0 waits forever)

    Returns:
        CommandResult; non-zero exit codes are reported, never raised
    """
    LOG.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=False,
            timeout=timeout or None,
        )
    except FileNotFoundError as e:
        return CommandResult(cmd=list(cmd), returncode=RC_NOT_FOUND, output=str(e))
    except subprocess.TimeoutExpired as e:
        output = e.output if isinstance(e.output, str) else ""
        return CommandResult(
            cmd=list(cmd),
            returncode=RC_TIMEOUT,
            output=f"{output}timed out after {timeout}s",
            timed_out=True,
        )

    return CommandResult(cmd=list(cmd), returncode=result.returncode, output=result.stdout or "")


def describe_failure(result: CommandResult) -> str:
    output = result.output.strip()
    if output:
        return f"exit status {result.returncode}, output: {output}"
    return f"exit status {result.returncode}"
