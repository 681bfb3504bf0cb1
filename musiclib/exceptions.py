"""Error taxonomy shared by the upload and deletion services."""


class MusicLibError(Exception):
    """Base class for errors that carry a client-facing code and message."""

    code = "ERROR"
    status_code = 400

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class InvalidSession(MusicLibError):
    """Invalid upload session"""

    code = "INVALID_SESSION"
    status_code = 400


class NotFound(MusicLibError):
    """Not found"""

    code = "NOT_FOUND"
    status_code = 404


class Unauthorized(MusicLibError):
    """Unauthorized"""

    code = "UNAUTHORIZED"
    status_code = 403


class DuplicateFile(MusicLibError):
    """File already exists"""

    code = "DUPLICATE_FILE"
    status_code = 409


class StorageFailure(MusicLibError):
    """Storage operation failed"""

    code = "STORAGE_FAILURE"
    status_code = 502


class CatalogFailure(MusicLibError):
    """Catalog operation failed"""

    code = "CATALOG_FAILURE"
    status_code = 500


class UploadCorrupted(MusicLibError):
    """Upload is corrupted or incomplete"""

    code = "UPLOAD_CORRUPTED"
    status_code = 422


class InvalidFile(MusicLibError):
    """File rejected"""

    code = "INVALID_FILE"
    status_code = 400


# Fatal upload corruption is reported under this name as well
Fatal = UploadCorrupted
