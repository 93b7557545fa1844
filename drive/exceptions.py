"""Custom exception classes for the storage-catalog engine."""

from typing import Optional


class DriveError(Exception):
    """
    Base exception class for all catalog engine errors.
    """
    pass


class ValidationError(DriveError):
    """
    Raised when input is rejected locally, before any hashing, encryption
    or collaborator I/O takes place.
    """
    pass


class NotFoundError(DriveError):
    """
    Raised for an unknown file id, version or pending access request.
    """
    pass


class NotSetupError(DriveError):
    """
    Raised when a collaboration operation targets a file with no access record.
    """
    pass


class DecryptionError(DriveError):
    """
    Raised when a payload cannot be decrypted. A wrong passphrase and a
    tampered ciphertext produce the same error.
    """
    pass


class ReassemblyError(DriveError):
    """
    Raised when encoded records cannot be turned back into the original
    payload (bad chunk, wrong order, hash mismatch).
    """
    pass


class UnsupportedVersionError(DriveError):
    """
    Raised when an imported snapshot declares a version this engine does not read.
    """
    pass


class CollaboratorError(DriveError):
    """
    Raised when a blob sink, ledger client, condition verifier or
    persistence backend fails. The original exception is kept as ``cause``.
    """

    def __init__(
        self,
        operation: str,
        cause: BaseException,
        committed_chunks: Optional[int] = None,
    ):
        self.operation = operation
        self.cause = cause
        self.committed_chunks = committed_chunks
        message = f"{operation} failed: {cause!r}"
        if committed_chunks is not None:
            message += f" ({committed_chunks} chunk(s) committed before failure)"
        super().__init__(message)
