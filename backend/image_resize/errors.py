"""
Image Resize Errors

Every failure the resize pipeline can surface to a client. Each error carries
the HTTP status the route layer translates it to.
"""


class ImageResizeError(Exception):
    """Base class for errors surfaced as an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidParameterError(ImageResizeError):
    """Requested width/height is not a positive integer within bounds."""

    status_code = 400


class InvalidImageError(ImageResizeError):
    """Fetched bytes could not be decoded as an image."""

    status_code = 400


class EncodeError(ImageResizeError):
    """Output encoding failed, including the fallback encoder."""

    status_code = 500


class UpstreamFetchError(ImageResizeError):
    """Network failure or bad status while fetching the source image."""

    status_code = 502


class UpstreamTimeoutError(UpstreamFetchError):
    status_code = 504


class ImageTooLargeError(UpstreamFetchError):
    status_code = 413
