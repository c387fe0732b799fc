"""Domain exceptions."""


class BookNookError(Exception):
    """Base class for all BookNook errors."""


class UploadError(BookNookError):
    """The book file could not be stored or its record could not be written."""


class ProfileNotFoundError(BookNookError):
    """The user's profile could not be loaded."""


class InvalidActivityError(BookNookError):
    """An activity action outside view/read/complete/bookmark/rate."""
