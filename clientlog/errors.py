"""Exceptions raised by the ClientLog back end."""
# clientlog/errors.py


class ClientLogError(Exception):
    """Base class for application errors."""


class StoreError(ClientLogError):
    """Raised when the document store cannot complete a read or write."""
