"""
Persistence core - error taxonomy.
Every failure raised by the store, cipher, codec and gateway derives from WorksheetVaultError.
"""


class WorksheetVaultError(Exception):
    """Base exception for the persistence core."""
    pass


class CipherError(WorksheetVaultError):
    """Raised when the encryption primitive cannot encrypt or decrypt a value."""
    pass


class CodecError(WorksheetVaultError):
    """Raised when a document cannot be encoded under a strict failure policy."""

    def __init__(self, field_path: str, message: str = ""):
        self.field_path = field_path
        super().__init__(message or f"Failed to encode sensitive field '{field_path}'")


class StoreError(WorksheetVaultError):
    """Raised by record stores for hard failures (permission, malformed payload, I/O)."""
    pass


class RecordNotFoundError(WorksheetVaultError):
    """Raised by record stores when no record exists for a composite key."""

    def __init__(self, owner_id: str, group_key: int, record_key: str):
        self.owner_id = owner_id
        self.group_key = group_key
        self.record_key = record_key
        super().__init__(f"No record for phase {group_key} worksheet '{record_key}'")


class GatewayTimeoutError(WorksheetVaultError):
    """Raised when a store write times out and the timeout policy is 'propagate'."""

    def __init__(self, timeout_sec: float):
        self.timeout_sec = timeout_sec
        super().__init__(f"Store write did not complete within {timeout_sec}s")
