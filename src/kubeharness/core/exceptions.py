"""Custom exceptions for kubeharness."""


class HarnessError(Exception):
    """Base exception for all kubeharness errors."""


class ConfigurationError(HarnessError):
    """Configuration-related errors."""


class ProcessError(HarnessError):
    """An external command failed or could not be started.

    Attributes:
        command: Full argument vector, program first
        returncode: Exit code, or None if the process never exited normally
        stdout: Captured standard output (empty when streamed)
        stderr: Captured standard error (empty when streamed)
        output: Captured combined output lines, where collected
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
        output: list[str] | None = None,
    ):
        """Initialize process error.

        Args:
            message: Error message
            command: Argument vector that was executed
            returncode: Process exit code
            stdout: Captured standard output
            stderr: Captured standard error
            output: Captured combined output lines
        """
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.output = output or []


class DeadlineExceededError(ProcessError):
    """The operation deadline elapsed and the running command was killed."""


class DeployerError(HarnessError):
    """A deployer lifecycle step failed."""
