"""Exceptions related to cuckoo."""

__all__ = [
    "CuckooException",
    "InputError",
    "ConfigurationMissingError",
    "FormatInvalidError",
    "LookupFailedError",
    "ReleaseNotFoundError",
    "SynthesisFailedError",
    "ApplyFailedError",
    "CommandException",
]


class CuckooException(Exception):
    """Generic base exception used for this library."""


class InputError(CuckooException):
    """Raised when the input files or values are not formatted as expected."""


class ConfigurationMissingError(CuckooException):
    """Raised when a required CI variable or credential is not set."""


class FormatInvalidError(CuckooException):
    """Raised when a tag or branch name does not follow SemVer2."""


class LookupFailedError(CuckooException):
    """Raised when a remote tag, history or dependency lookup failed."""


class ReleaseNotFoundError(LookupFailedError):
    """Raised by a history query when the release does not exist yet."""

    def __init__(self, release_name: str) -> None:
        super().__init__(f"Release {release_name} not found")
        self.release_name = release_name


class SynthesisFailedError(CuckooException):
    """Raised when building a chart directory or Chart.yaml failed."""


class ApplyFailedError(CuckooException):
    """Raised when installing or upgrading a release failed or timed out."""

    def __init__(self, release_name: str, action: str, message: str) -> None:
        super().__init__(f"Unable to {action} release {release_name}: {message}")
        self.release_name = release_name
        self.action = action


class CommandException(CuckooException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure running a helm command."""


class DockerException(CommandException):
    """Raised when there is a failure running a docker command."""
