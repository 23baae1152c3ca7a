"""Subprocess execution for the command-line tools the deployers drive."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass, field

from kubeharness.core.exceptions import DeadlineExceededError, ProcessError
from kubeharness.utils.deadline import Deadline
from kubeharness.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Command:
    """A program and its arguments."""

    program: str
    args: list[str] = field(default_factory=list)

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        return " ".join(self.argv)


def _timeout(argv: list[str], deadline: Deadline | None) -> float | None:
    """Translate a deadline into a subprocess timeout.

    Raises:
        DeadlineExceededError: If the deadline already elapsed
    """
    if deadline is None:
        return None
    if deadline.expired:
        logger.error("deadline_exceeded", command=" ".join(argv))
        raise DeadlineExceededError(
            f"deadline exceeded before running {' '.join(argv)}", command=argv
        )
    return deadline.remaining()


def _start_error(argv: list[str], error: OSError) -> ProcessError:
    """Translate a failure to start a process into a ProcessError."""
    program = argv[0]
    if isinstance(error, FileNotFoundError):
        logger.error("command_not_found", program=program)
        return ProcessError(f"{program} command not found", command=argv)
    logger.error("command_start_failed", program=program, error=str(error))
    return ProcessError(f"{program} could not be started: {error}", command=argv)


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.kill()
        proc.wait()


class ProcessRunner:
    """Run external commands, streaming or capturing their output.

    Every method accepts an optional ``env`` (defaults to the current process
    environment) and an optional ``deadline``. When the deadline elapses the
    running process is killed and ``DeadlineExceededError`` is raised.
    """

    def run(
        self,
        program: str,
        args: list[str],
        env: dict[str, str] | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Run a command with its output streamed to the terminal.

        Args:
            program: Executable name or path
            args: Command arguments
            env: Environment for the child process
            deadline: Optional operation deadline

        Raises:
            ProcessError: If the command cannot be started or exits non-zero
            DeadlineExceededError: If the deadline elapses
        """
        argv = [program, *args]
        timeout = _timeout(argv, deadline)

        logger.debug("running_command", command=" ".join(argv))

        try:
            result = subprocess.run(argv, env=env, timeout=timeout, check=False)
        except OSError as e:
            raise _start_error(argv, e) from e
        except subprocess.TimeoutExpired as e:
            logger.error("deadline_exceeded", command=" ".join(argv))
            raise DeadlineExceededError(
                f"deadline exceeded running {' '.join(argv)}", command=argv
            ) from e

        if result.returncode != 0:
            logger.error("command_failed", command=" ".join(argv), returncode=result.returncode)
            raise ProcessError(
                f"{' '.join(argv)} failed with exit code {result.returncode}",
                command=argv,
                returncode=result.returncode,
            )

    def output(
        self,
        program: str,
        args: list[str],
        env: dict[str, str] | None = None,
        deadline: Deadline | None = None,
    ) -> bytes:
        """Run a command and capture its standard output verbatim.

        Standard error is captured as well and attached to the error on
        failure.

        Returns:
            Raw standard output

        Raises:
            ProcessError: If the command cannot be started or exits non-zero
            DeadlineExceededError: If the deadline elapses
        """
        argv = [program, *args]
        timeout = _timeout(argv, deadline)

        logger.debug("running_command", command=" ".join(argv), capture=True)

        try:
            result = subprocess.run(
                argv,
                env=env,
                timeout=timeout,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            raise _start_error(argv, e) from e
        except subprocess.TimeoutExpired as e:
            logger.error("deadline_exceeded", command=" ".join(argv))
            raise DeadlineExceededError(
                f"deadline exceeded running {' '.join(argv)}", command=argv
            ) from e

        if result.returncode != 0:
            stdout = result.stdout.decode(errors="replace")
            stderr = result.stderr.decode(errors="replace")
            logger.error(
                "command_failed",
                command=" ".join(argv),
                returncode=result.returncode,
                stderr=stderr,
            )
            raise ProcessError(
                f"{' '.join(argv)} failed with exit code {result.returncode}: "
                f"stdout: {stdout!r}, stderr: {stderr!r}",
                command=argv,
                returncode=result.returncode,
                stdout=stdout,
                stderr=stderr,
            )

        return result.stdout

    def combined_output_lines(
        self,
        program: str,
        args: list[str],
        env: dict[str, str] | None = None,
        deadline: Deadline | None = None,
    ) -> list[str]:
        """Run a command and return stdout and stderr interleaved, by line.

        Raises:
            ProcessError: On failure, with the captured lines in ``output``
            DeadlineExceededError: If the deadline elapses
        """
        argv = [program, *args]
        timeout = _timeout(argv, deadline)

        logger.debug("running_command", command=" ".join(argv), capture=True)

        try:
            result = subprocess.run(
                argv,
                env=env,
                timeout=timeout,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=False,
            )
        except OSError as e:
            raise _start_error(argv, e) from e
        except subprocess.TimeoutExpired as e:
            logger.error("deadline_exceeded", command=" ".join(argv))
            raise DeadlineExceededError(
                f"deadline exceeded running {' '.join(argv)}", command=argv
            ) from e

        lines = result.stdout.decode(errors="replace").splitlines()
        if result.returncode != 0:
            logger.error("command_failed", command=" ".join(argv), returncode=result.returncode)
            raise ProcessError(
                f"{' '.join(argv)} failed with exit code {result.returncode}",
                command=argv,
                returncode=result.returncode,
                output=lines,
            )
        return lines

    def pipe(
        self,
        producer: Command,
        consumer: Command,
        env: dict[str, str] | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Stream the standard output of one command into another.

        Both processes are started before either is waited on, so bytes flow
        through the OS pipe as they are produced. The producer is waited on
        first, then the consumer; the first failure is raised and the other
        process is killed if still running.

        Args:
            producer: Command whose standard output is read
            consumer: Command that reads it on standard input
            env: Environment for both child processes
            deadline: Optional operation deadline

        Raises:
            ProcessError: If either command cannot be started or exits non-zero
            DeadlineExceededError: If the deadline elapses
        """
        _timeout(producer.argv, deadline)

        logger.debug("running_pipe", producer=str(producer), consumer=str(consumer))

        try:
            producer_proc = subprocess.Popen(producer.argv, stdout=subprocess.PIPE, env=env)
        except OSError as e:
            raise _start_error(producer.argv, e) from e

        try:
            consumer_proc = subprocess.Popen(consumer.argv, stdin=producer_proc.stdout, env=env)
        except OSError as e:
            _kill(producer_proc)
            raise _start_error(consumer.argv, e) from e
        finally:
            # the consumer holds its own copy of the read end
            producer_proc.stdout.close()

        try:
            self._wait(producer_proc, producer.argv, deadline)
        except ProcessError:
            _kill(consumer_proc)
            raise
        self._wait(consumer_proc, consumer.argv, deadline)

    def _wait(self, proc: subprocess.Popen, argv: list[str], deadline: Deadline | None) -> None:
        timeout = deadline.remaining() if deadline is not None else None
        try:
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            _kill(proc)
            logger.error("deadline_exceeded", command=" ".join(argv))
            raise DeadlineExceededError(
                f"deadline exceeded running {' '.join(argv)}", command=argv
            ) from e

        if returncode != 0:
            logger.error("command_failed", command=" ".join(argv), returncode=returncode)
            raise ProcessError(
                f"{' '.join(argv)} failed with exit code {returncode}",
                command=argv,
                returncode=returncode,
            )
