class PharError(Exception):
    """Base class for pharpack-specific errors."""


# Read side: fatal, the whole parse or extraction is aborted
class FormatError(PharError):
    pass


class DecompressionError(PharError):
    pass


# Build side: rejects a single call, the builder stays usable
class DuplicateEntryError(PharError):
    pass


class InvalidPathError(PharError, ValueError):
    pass


class EmptyArchiveError(PharError):
    pass


class BuilderClosedError(PharError):
    pass


# Checked before any output is touched
class EnvironmentPreconditionError(PharError):
    pass
