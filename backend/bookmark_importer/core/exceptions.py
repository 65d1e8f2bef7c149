"""Exception hierarchy shared by the import pipeline and its HTTP routes."""


class ImporterError(Exception):
    """Base class for all application errors."""


class ImportInputError(ImporterError, ValueError):
    """The uploaded file cannot be turned into an import (maps to 400)."""


class EmptyFileError(ImportInputError):
    """The upload carried no content."""

    def __init__(self, message: str = "File is empty"):
        super().__init__(message)


class FormatUnrecognizedError(ImportInputError):
    """No parser claimed the uploaded content."""

    def __init__(
        self,
        message: str = (
            "Unrecognized file format. Supported: Netscape HTML, Pinboard JSON, "
            "Pocket CSV, Instapaper CSV."
        ),
    ):
        super().__init__(message)


class AuthenticationError(ImporterError):
    """The remote session is missing or can no longer be restored."""


class StorageError(ImporterError):
    """The job store failed; nothing was committed and the call may be retried."""

    retryable = True


class RemoteAPIError(ImporterError):
    """The remote record API answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class JobNotFoundError(ImporterError):
    """No import job exists for the given id."""


class JobOwnershipError(ImporterError):
    """The caller does not own the requested import job."""


class ImportStalledError(ImporterError):
    """The polling loop hit its iteration cap before the job reported done."""

    def __init__(self, message: str = "Import stalled, please retry"):
        super().__init__(message)


class JobFailedError(ImporterError):
    """The import job already ended in the failed state."""
