class StorageError(Exception):
    """A subscriber or delivery log record could not be read or written."""


class InvalidDuration(ValueError):
    """A purge age token is not of the form <int><d|h|m>."""
