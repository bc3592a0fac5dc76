class BlogError(Exception):
    status_code = 400
    message = "Request failed"

    def __init__(self, message=None):
        super().__init__(message or self.message)

    @property
    def error(self):
        return str(self)


class InvalidCredentials(BlogError):
    status_code = 401
    message = "Invalid credentials"


class PendingApproval(BlogError):
    status_code = 403
    message = "Account is waiting for administrator approval"


class UsernameTaken(BlogError):
    status_code = 409
    message = "Username already exists"


class MissingFields(BlogError):
    message = "Missing fields"


class Unauthorized(BlogError):
    status_code = 403
    message = "Unauthorized"


class EmptyContent(BlogError):
    message = "Text or media is required"


class InvalidMedia(BlogError):
    message = "Unsupported media"


class PostNotFound(BlogError):
    status_code = 404
    message = "Post not found"


class RegistrationNotFound(BlogError):
    status_code = 404
    message = "Registration request not found"


class StorageError(BlogError):
    status_code = 503
    message = "Storage is unavailable"


class MediaStorageError(StorageError):
    message = "Media storage is unavailable"


class ConfigurationError(BlogError):
    status_code = 500
    message = "No storage backend is configured"


class DocumentNotFound(LookupError):
    """Raised by storage adapters when a document id does not exist."""
