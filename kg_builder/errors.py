"""Exception hierarchy for the build pipeline."""


class KGBuilderError(Exception):
    """Base class for every error raised by kg_builder."""


class InvalidBuildRequestError(KGBuilderError):
    """Raised when a build request has an unknown mode or stage."""


class BuildInProgressError(KGBuilderError):
    """Raised when a build is requested while another one is running."""

    def __init__(self, message: str = "A build is already in progress") -> None:
        super().__init__(message)


class UnknownProjectError(KGBuilderError):
    """Raised when a project id is not in the configured project list."""


class StageInputError(KGBuilderError):
    """Raised when a stage cannot read the artifact of the previous stage."""


class DimensionMismatchError(KGBuilderError):
    """Raised when the vector collection's dimension differs from the configured one."""


class GitError(KGBuilderError):
    """Raised when a git command fails."""
