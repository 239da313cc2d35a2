"""
Fleet Errors - Exception hierarchy for fleet provisioning and lifecycle.

Every failure that originates in an external command carries that command's
captured output verbatim, so callers can show the operator exactly what the
build tool chain or the daemon printed.

    FleetError
    ├── InvalidFleetName      suffix / directory name breaks the naming convention
    ├── AcquisitionError      release lookup, download or extraction failed
    ├── BuildStepError        one build tool chain step exited non-zero
    ├── ConfigTemplateError   example config lacks mandatory placeholders
    ├── LinkError             linking phase could not run or had failed edges
    └── LifecycleError        start / stop / status of an instance failed
"""

from typing import List, Optional


class FleetError(Exception):
    """Base error for anything the fleet subsystem reports."""

    def __init__(self, message: str, output: Optional[str] = None):
        self.output = output
        super().__init__(message)

    def details(self) -> str:
        """Message followed by captured output, if any."""
        if self.output:
            return f"{self}\n\nOutput:\n{self.output}"
        return str(self)


class InvalidFleetName(FleetError):
    """A suffix or directory name cannot round-trip through the naming convention."""
    pass


class AcquisitionError(FleetError):
    """Fetching or unpacking the daemon source failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None, output: Optional[str] = None):
        self.cause = cause
        if cause:
            message += f": {cause}"
        super().__init__(message, output=output)


class BuildStepError(FleetError):
    """A build tool chain step failed for one instance."""

    def __init__(
        self,
        step: str,
        index: int,
        returncode: Optional[int],
        output: str = "",
        reason: Optional[str] = None,
    ):
        self.step = step
        self.index = index
        self.returncode = returncode
        if reason is None:
            reason = "timed out" if returncode is None else f"exited with status {returncode}"
        super().__init__(f"{step} failed for server {index}: {reason}", output=output)


class ConfigTemplateError(FleetError):
    """The configuration template cannot produce a consistent config."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(message)


class LinkError(FleetError):
    """Link blocks could not be injected."""

    def __init__(self, message: str, report=None):
        self.report = report
        super().__init__(message)


class LifecycleError(FleetError):
    """An instance could not be started, or its state could not be determined."""

    def __init__(self, server_name: str, message: str, output: Optional[str] = None):
        self.server_name = server_name
        super().__init__(f"{server_name}: {message}", output=output)
