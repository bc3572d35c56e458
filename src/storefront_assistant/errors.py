"""Exception types raised at the edges of a chat turn."""

from __future__ import annotations


class InvalidTurnRequest(ValueError):
    """A turn was submitted without the fields it needs (tenant, message)."""


class SessionTenantMismatch(InvalidTurnRequest):
    """A session id was presented to a tenant that does not own it."""

    def __init__(self, session_id: str, tenant: str) -> None:
        super().__init__(f"Session {session_id} does not belong to {tenant}")
        self.session_id = session_id
        self.tenant = tenant


class UpstreamError(RuntimeError):
    """An external provider (embedding, vector index, model) failed."""

    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(f"{provider}: {detail}")
        self.provider = provider
        self.detail = detail
