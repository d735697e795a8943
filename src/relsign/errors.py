"""Error taxonomy for the release signing toolkit."""

from enum import Enum


class ErrorKind(Enum):
    """Machine-readable category of a release tool failure."""

    FILE_CONFLICT = "file_conflict"
    MISSING_KEY = "missing_key"
    DECRYPTION = "decryption"
    MALFORMED_ARCHIVE = "malformed_archive"
    MALFORMED_INPUT = "malformed_input"
    PROTECTOR_UNAVAILABLE = "protector_unavailable"
    ROTATION_REQUIRED = "rotation_required"


class ReleaseToolError(Exception):
    """Base class for every failure the toolkit reports."""

    kind: ErrorKind


class FileConflictError(ReleaseToolError):
    """An archive target name is already occupied."""

    kind = ErrorKind.FILE_CONFLICT


class MissingKeyError(ReleaseToolError):
    """No stored private key exists under the requested name."""

    kind = ErrorKind.MISSING_KEY


class DecryptionError(ReleaseToolError):
    """A protected blob could not be opened.

    Raised for a wrong password, a corrupted or truncated blob, and for a
    blob produced under a different user or machine context.
    """

    kind = ErrorKind.DECRYPTION


class MalformedArchiveError(ReleaseToolError):
    """A release archive lacks its payload or signature entry."""

    kind = ErrorKind.MALFORMED_ARCHIVE


class MalformedInputError(ReleaseToolError):
    """Key or signature bytes have the wrong shape."""

    kind = ErrorKind.MALFORMED_INPUT


class ProtectorUnavailableError(ReleaseToolError):
    """The requested secret protection backend cannot run here."""

    kind = ErrorKind.PROTECTOR_UNAVAILABLE


class RotationRequiredError(ReleaseToolError):
    """Key generation was asked to run without a rotation decision."""

    kind = ErrorKind.ROTATION_REQUIRED
