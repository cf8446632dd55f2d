"""API key authentication binding each key to an actor id and role."""

from __future__ import annotations

import os

from starlette.requests import Request

from case_engine.registry import ActorRole

# When CASE_ENGINE_API_KEYS is empty or unset, we default to a single dev key (dev-only, not for production).
_DEFAULT_DEV_KEYS = {"dev": ("dev_key", ActorRole.MASTER_ADMIN)}
_DEFAULT_ROLE = ActorRole.EXECUTIVE


def parse_api_keys_env() -> dict[str, tuple[str, ActorRole]]:
    """Parse CASE_ENGINE_API_KEYS into key -> (actor, role).
    Format: 'name1:key1:L1_MASTER_ADMIN,name2:key2' (optional :ROLE, default L2_EXEC_ADMIN).
    Entries with an unknown role are skipped."""
    raw = os.environ.get("CASE_ENGINE_API_KEYS", "").strip()
    key_to_identity: dict[str, tuple[str, ActorRole]] = {}
    for part in raw.split(","):
        parts = [p.strip() for p in part.strip().split(":")]
        if len(parts) < 2:
            continue
        name, key = parts[0], parts[1]
        try:
            role = ActorRole(parts[2]) if len(parts) > 2 and parts[2] else _DEFAULT_ROLE
        except ValueError:
            continue
        if name and key:
            key_to_identity[key] = (name, role)
    if not key_to_identity:
        return {key: (name, role) for name, (key, role) in _DEFAULT_DEV_KEYS.items()}
    return key_to_identity


def require_api_key(request: Request) -> tuple[str, ActorRole]:
    """Validate X-API-Key header; set audit actor and role; return (actor, role).
    Raises 401 if header missing or key invalid."""
    from fastapi import HTTPException

    from case_engine.audit_context import set_actor

    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")
    identity = parse_api_keys_env().get(api_key)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    actor, role = identity
    set_actor(actor, role)
    return actor, role
