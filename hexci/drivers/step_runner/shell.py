"""Shell step runner driver using asyncio subprocesses.

Each command runs through the system shell with the step environment. Two
files are provided to the command:

- ``$HEXCI_OUTPUT``: lines ``name=value`` become step outputs
- ``$HEXCI_ENV``: lines ``NAME=value`` are exported to later steps of the job

Both accept the multi-line form::

    name<<EOF
    first line
    second line
    EOF
"""

from __future__ import annotations

import asyncio
import os
import signal
import tempfile
from contextlib import suppress
from pathlib import Path

from hexci.kernel.exceptions import ValidationError
from hexci.kernel.logging import get_logger
from hexci.kernel.ports.step_runner import StepInvocation, StepResult

logger = get_logger(__name__)

OUTPUT_FILE_VAR = "HEXCI_OUTPUT"
ENV_FILE_VAR = "HEXCI_ENV"


def parse_key_value_file(path: Path) -> dict[str, str]:
    """Parse a ``name=value`` / ``name<<DELIM`` file written by a step.

    Raises
    ------
    ValidationError
        If a line is malformed or a heredoc is never closed.
    """
    if not path.exists():
        return {}

    values: dict[str, str] = {}
    lines = iter(path.read_text(encoding="utf-8").splitlines())
    for line in lines:
        if not line.strip():
            continue
        if "<<" in line and ("=" not in line or line.index("<<") < line.index("=")):
            name, delimiter = line.split("<<", 1)
            body: list[str] = []
            for body_line in lines:
                if body_line == delimiter:
                    break
                body.append(body_line)
            else:
                raise ValidationError(path.name, f"unterminated value for '{name}'", delimiter)
            values[name.strip()] = "\n".join(body)
        elif "=" in line:
            name, value = line.split("=", 1)
            values[name.strip()] = value
        else:
            raise ValidationError(path.name, "expected 'name=value' or 'name<<DELIMITER'", line)
    return values


class ShellStepRunner:
    """StepRunner driver that executes commands with ``/bin/sh`` (or ``shell``).

    Parameters
    ----------
    shell : str | None
        Executable used to run commands. None uses the platform default shell.
    inherit_env : bool
        Start from the engine's process environment (default: True).
    """

    def __init__(self, shell: str | None = None, inherit_env: bool = True) -> None:
        self.shell = shell
        self.inherit_env = inherit_env

    async def arun(self, invocation: StepInvocation) -> StepResult:
        """Run the invocation's command and collect outputs and env exports."""
        with tempfile.TemporaryDirectory(prefix="hexci-") as tmp:
            output_file = Path(tmp) / "output"
            env_file = Path(tmp) / "env"
            output_file.touch()
            env_file.touch()

            env = dict(os.environ) if self.inherit_env else {}
            env.update(invocation.env)
            env[OUTPUT_FILE_VAR] = str(output_file)
            env[ENV_FILE_VAR] = str(env_file)

            logger.debug("[{}/{}] $ {}", invocation.job, invocation.step, invocation.command)
            process = await asyncio.create_subprocess_shell(
                invocation.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=invocation.workdir,
                executable=self.shell,
                start_new_session=True,
            )
            try:
                stdout, stderr = await process.communicate()
            except asyncio.CancelledError:
                # Timeouts and cancellation arrive here; the whole process group goes,
                # background children included, so their pipes close
                with suppress(ProcessLookupError):
                    os.killpg(process.pid, signal.SIGKILL)
                await process.wait()
                raise

            result = StepResult(
                exit_code=process.returncode if process.returncode is not None else -1,
                stdout=stdout.decode(errors="replace"),
                stderr=stderr.decode(errors="replace"),
            )
            if result.ok:
                result.outputs = parse_key_value_file(output_file)
                result.env_updates = parse_key_value_file(env_file)

        for line in result.stdout.splitlines():
            logger.debug("[{}/{}] {}", invocation.job, invocation.step, line)
        if not result.ok and result.stderr:
            logger.warning(
                "[{}/{}] exited {}: {}",
                invocation.job,
                invocation.step,
                result.exit_code,
                result.stderr.strip().splitlines()[-1] if result.stderr.strip() else "",
            )
        return result
