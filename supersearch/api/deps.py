from __future__ import annotations

from fastapi import Header

from supersearch.services.collaborators import QuotaGate, UnlimitedQuota
from supersearch.services.run_manager import RunManager
from supersearch.services.session_store import SessionStore, get_session_store

_run_manager: RunManager | None = None
_quota_gate: QuotaGate | None = None


def get_run_manager() -> RunManager:
    global _run_manager
    if _run_manager is None:
        _run_manager = RunManager()
    return _run_manager


def get_quota_gate() -> QuotaGate:
    global _quota_gate
    if _quota_gate is None:
        _quota_gate = UnlimitedQuota()
    return _quota_gate


def get_store() -> SessionStore:
    return get_session_store()


def get_user_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Caller identity is established upstream and forwarded in X-User-Id."""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


async def shutdown() -> None:
    if _run_manager is not None:
        await _run_manager.shutdown()
