from tenant_sync.schemas.sync import ConflictPayload, FlaggedConflict

__all__ = ["ConflictPayload", "FlaggedConflict"]
