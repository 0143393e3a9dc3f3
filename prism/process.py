import logging
import os
import subprocess
from typing import Dict, List, Optional

from pydantic import BaseModel

from prism.errors import ExternalToolError

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout followed by stderr, for diagnostics."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


def build_env(overlay: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ)
    if overlay:
        env.update(overlay)
    return env


class CommandRunner:
    """
    Runs external commands with an explicit working directory and environment.

    The process-wide cwd and os.environ are never touched: every call gets
    `cwd=` and a copy of the environment with `env_overlay` applied on top.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(self, args: List[str], cwd: str, env_overlay: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> CommandResult:
        timeout = timeout if timeout is not None else self.timeout
        logger.debug("Running %s in %s", args[0] if args else "", cwd)
        try:
            completed = subprocess.run(
                args,
                cwd=cwd,
                env=build_env(env_overlay),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            partial = _decode(e.stdout) + _decode(e.stderr)
            raise ExternalToolError(f"{args[0]} timed out after {timeout}s", command=args, output=partial)
        except FileNotFoundError as e:
            raise ExternalToolError(f"{args[0]} is not installed or not on PATH", command=args, output=str(e))

        return CommandResult(
            args=list(args),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _decode(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
