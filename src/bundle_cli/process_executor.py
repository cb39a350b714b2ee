# Copyright 2025 Canonical Ltd.
# See LICENSE file for licensing details.

import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Dict, List, Optional, Sequence, TextIO, Union

from bundle_cli.logger import setup_logger

logger = setup_logger(__name__)

# Exit code used by POSIX shells when the requested executable doesn't exist
COMMAND_NOT_FOUND_EXIT_CODE = 127

DEFAULT_PARALLELISM = 3


@dataclass
class ProcessExecutionOptions:
    """
    Describes a shell command to run.

    Attributes:
        command: Shell command line. Pipes are allowed.
        work_dir: Working directory, defaults to the current one.
        env: Variables added to (or overriding) the current environment.
        output_stream: Receives stdout line by line; discarded if None.
        error_stream: Receives stderr line by line; discarded if None.
        interactive: Attach the command to the terminal instead of the streams.
    """

    command: str
    work_dir: Optional[Union[str, Path]] = None
    env: Optional[Dict[str, str]] = None
    output_stream: Optional[TextIO] = None
    error_stream: Optional[TextIO] = None
    interactive: bool = False


def _pump(pipe: IO[str], stream: TextIO) -> None:
    """Copy every line of ``pipe`` into ``stream`` as soon as it is available."""
    for line in pipe:
        stream.write(line)
    stream.flush()


def execute_process(options: ProcessExecutionOptions) -> int:
    """
    Run a shell command and return its exit code.

    Args:
        options: What to run and where to send its output.

    Returns:
        The exit code. COMMAND_NOT_FOUND_EXIT_CODE means the executable is missing.
    """
    env = {**os.environ, **options.env} if options.env else None
    logger.debug("Executing command: %s", options.command)

    if options.interactive:
        completed = subprocess.run(options.command, shell=True, cwd=options.work_dir, env=env)
        return completed.returncode

    with subprocess.Popen(
        options.command,
        shell=True,
        cwd=options.work_dir,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE if options.output_stream is not None else subprocess.DEVNULL,
        stderr=subprocess.PIPE if options.error_stream is not None else subprocess.DEVNULL,
        text=True,
    ) as process:
        pumps = []
        for pipe, stream in (
            (process.stdout, options.output_stream),
            (process.stderr, options.error_stream),
        ):
            if pipe is not None and stream is not None:
                pump = threading.Thread(target=_pump, args=(pipe, stream), daemon=True)
                pump.start()
                pumps.append(pump)

        for pump in pumps:
            pump.join()
        exit_code = process.wait()

    logger.debug("Command exited with code %d: %s", exit_code, options.command)
    return exit_code


class ParallelProcessExecutor:
    """
    Runs a batch of independent commands with at most ``max_workers`` at a time.

    The batch always runs to completion; exit codes are returned in submission
    order regardless of which command finishes first.
    """

    def __init__(
        self,
        options: Sequence[ProcessExecutionOptions],
        max_workers: int = DEFAULT_PARALLELISM,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.options = list(options)
        self.max_workers = max_workers

    def execute(self) -> List[int]:
        """Run every command and return one exit code per command, in input order."""
        if not self.options:
            return []

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(execute_process, self.options))
