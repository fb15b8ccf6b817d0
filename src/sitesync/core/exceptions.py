"""Custom exceptions for sitesync."""

from typing import Optional


class SiteSyncError(Exception):
    """Base exception for all sitesync errors."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ConfigurationError(SiteSyncError):
    """Configuration error."""
    pass


class AuthenticationError(SiteSyncError):
    """Missing, malformed or mismatched credential."""
    pass


class FilterError(SiteSyncError):
    """Event payload could not be evaluated."""
    pass


class MalformedEventError(FilterError):
    """Event payload is missing required fields or is not valid JSON."""
    pass


class CommandError(SiteSyncError):
    """External command exited with a non-zero status."""

    def __init__(self, message: str, output: str = "", returncode: Optional[int] = None):
        super().__init__(message, code="command_failed")
        self.output = output
        self.returncode = returncode


class CommandTimeoutError(CommandError):
    """External command exceeded its timeout and was killed."""

    def __init__(self, message: str, output: str = "", timeout: Optional[float] = None):
        super().__init__(message, output=output)
        self.code = "command_timeout"
        self.timeout = timeout


class StageError(SiteSyncError):
    """A pipeline stage failed. Carries the diagnostic output of the failing tool."""

    stage = "unknown"

    def __init__(self, message: str, output: str = "", code: Optional[str] = None):
        super().__init__(message, code=code)
        self.output = output


class FetchError(StageError):
    """Source snapshot could not be obtained."""

    stage = "fetching"


class FetchTransportError(FetchError):
    """Network or transport failure while downloading the source."""
    pass


class FetchStatusError(FetchError):
    """Source host answered with a non-success status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message, code="bad_status")
        self.status_code = status_code


class ArchiveError(FetchError):
    """Downloaded archive is corrupt or has an unexpected layout."""
    pass


class FetchIOError(FetchError):
    """Local filesystem failure while storing or extracting the source."""
    pass


class BuildError(StageError):
    """Static site generator failed."""

    stage = "building"


class PublishError(StageError):
    """Transfer of the built site to the remote host failed."""

    stage = "publishing"


class DispatchError(SiteSyncError):
    """Validated trigger could not be handed off to a worker."""
    pass


class BusyError(SiteSyncError):
    """Another deployment run holds the deployment lock."""

    def __init__(self, message: str = "deployment already in progress"):
        super().__init__(message, code="busy")
