class ScanVaultError(Exception):
    """Base class for errors raised by the scan pipeline."""


class ValidationError(ScanVaultError):
    """Request rejected before any pipeline step ran. Safe to show to the client."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ObjectCollisionError(ScanVaultError):
    """An object already exists at the target storage path."""

    def __init__(self, path: str):
        super().__init__(f"Object already exists: {path}")
        self.path = path


class InfrastructureError(ScanVaultError):
    """Hashing, randomness, storage or audit failure. Never echoed to the client."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.stage = stage


class CipherError(InfrastructureError):
    pass


class ObjectStoreError(InfrastructureError):
    pass


class AuditLogError(InfrastructureError):
    pass
