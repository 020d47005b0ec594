"""
Error taxonomy for laemp.

Every error that reaches the CLI terminates the run with exit code 1.
Nothing is recovered locally; re-running relies on idempotence.
"""

from typing import List, Optional


class LaempError(Exception):
    """Base class for all provisioning errors."""
    pass


class ConfigurationError(LaempError):
    """Bad flag value or combination. Raised before any side effect."""
    pass


class DependencyError(LaempError):
    """A prerequisite (tool, component, file) is absent."""
    pass


class DetectionError(LaempError):
    """Current state cannot be determined reliably."""
    pass


class TemplateError(LaempError):
    """Template uses control flow or lacks a substitution."""
    pass


class CommandError(LaempError):
    """External command exited non-zero."""

    def __init__(self, args: List[str], exit_code: int, output: Optional[str] = None):
        self.args_list = list(args)
        self.exit_code = exit_code
        self.output = output or ""
        super().__init__(
            f"Command failed with exit code {exit_code}: {' '.join(self.args_list)}"
        )

    def output_tail(self, limit: int = 20) -> str:
        """Last lines of the captured output."""
        lines = self.output.splitlines()
        return "\n".join(lines[-limit:])
