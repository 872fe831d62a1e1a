# services/audit_log.py
from __future__ import annotations

import inspect
import logging
import uuid
from contextvars import ContextVar, Token
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any, ClassVar, Iterable, Mapping, Optional, Sequence, Self

from mob_maps.config import Settings
from mob_maps.db.database import DataBase
from mob_maps.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from mob_maps.db.schemas.profile import ProfileRead

logger = logging.getLogger(__name__)


class AuditLogService:
    """
    Stores every meaningful engine call in the ``audit_log`` table.

    Payloads are normalised into JSON-friendly dictionaries and enriched with
    the call site. Entries are written in their own session, after the
    business unit of work has finished, so auditing never widens a
    territory's critical section.
    """

    _instance: ClassVar[Optional["AuditLogService"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self._database = DataBase()
        self._settings = Settings()
        self._logger = logging.getLogger("mob_maps.audit")
        self._module_name = Path(__file__).name
        # actor of the current request, bound by the hosting service
        self._actor_ctx: ContextVar[Optional[uuid.UUID]] = ContextVar("audit_actor", default=None)
        self._initialized = True

    @property
    def enabled(self) -> bool:
        return self._settings.audit_enabled

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | None = None,
        payload: Any | None = None,
        include_context: bool = True,
    ) -> Optional[AuditLogRead]:
        """
        Persist one audit entry. Returns None when auditing is switched off.

        :param action: machine-readable label (``votes.cast_vote``, ``teams.join_team.error``)
        :param actor_id: profile that initiated the action; falls back to the bound actor
        :param payload: arbitrary structure with details, serialised before storing
        :param include_context: attach the caller's module, location and function
        """
        if not self.enabled:
            return None

        payload_map = self._as_mapping(payload)
        if include_context:
            payload_map.setdefault("_meta", {}).update(self._call_context())

        if actor_id is None:
            actor_id = self.current_actor()

        entry = await self._database.create_audit_log(
            AuditLogCreate(action=action, actor_id=actor_id, payload=payload_map)
        )
        self._logger.info(
            "AUDIT action=%s actor=%s entry=%s",
            action,
            str(actor_id) if actor_id else "-",
            entry.id,
        )
        return entry

    async def log_profile_action(
        self,
        *,
        action: str,
        actor: ProfileRead | uuid.UUID | None,
        payload: Any | None = None,
    ) -> Optional[AuditLogRead]:
        """Like :meth:`log`, storing the acting profile's handle next to the payload."""
        body: dict[str, Any] = {}
        if payload is not None:
            body["data"] = self.serialize(payload)
        if isinstance(actor, ProfileRead):
            body["actor"] = {"id": str(actor.id), "handle": actor.handle}
        return await self.log(action=action, actor_id=self._actor_id(actor), payload=body)

    async def list_entries(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        """Recent entries, newest first: (items, total)."""
        return await self._database.list_audit_logs(
            limit=limit,
            offset=offset,
            actor_id=actor_id,
            action=action,
        )

    # --------------
    # Actor context
    # --------------
    def bind_actor(self, actor_id: Optional[uuid.UUID]) -> Token:
        return self._actor_ctx.set(actor_id)

    def unbind_actor(self, token: Token) -> None:
        self._actor_ctx.reset(token)

    def current_actor(self) -> Optional[uuid.UUID]:
        return self._actor_ctx.get()

    def _actor_id(self, actor: Any) -> uuid.UUID | None:
        if isinstance(actor, uuid.UUID):
            return actor
        if isinstance(actor, ProfileRead):
            return actor.id
        return None

    def _as_mapping(self, payload: Any | None) -> dict[str, Any]:
        if payload is None:
            return {}
        serialized = self.serialize(payload)
        if isinstance(serialized, dict):
            return dict(serialized)
        return {"value": serialized}

    def serialize(self, value: Any) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, str):
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if hasattr(value, "model_dump"):
            return self.serialize(value.model_dump())
        if is_dataclass(value) and not isinstance(value, type):
            return self.serialize(asdict(value))
        if isinstance(value, Mapping):
            return {str(k): self.serialize(v) for k, v in value.items()}
        if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
            return [self.serialize(v) for v in value]
        return repr(value)

    def _call_context(self) -> dict[str, Any]:
        for frame in inspect.stack()[2:]:
            path = Path(frame.filename)
            if path.name != self._module_name:
                return {
                    "module": path.stem,
                    "location": f"{path.name}:{frame.lineno}",
                    "function": frame.function,
                }
        return {}


audit_logger = AuditLogService()


def _resolve_actor(
    actor_fields: Iterable[str] | None,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    signature: inspect.Signature,
) -> Any:
    if not actor_fields:
        return None
    for field in actor_fields:
        if kwargs.get(field) is not None:
            return kwargs[field]
    for idx, name in enumerate(signature.parameters):
        if name in actor_fields and idx < len(args) and args[idx] is not None:
            return args[idx]
    return None


async def _emit(*, action: str, actor: Any, payload: dict[str, Any]) -> None:
    # the business call already finished; a failing audit write must not change its outcome
    try:
        await audit_logger.log_profile_action(action=action, actor=actor, payload=payload)
    except Exception:
        logger.exception("Failed to write audit entry %s", action)


def _wrap_async_callable(fn, action: str, *, actor_fields: Iterable[str] | None):
    if getattr(fn, "__audit_wrapped__", False):
        return fn

    signature = inspect.signature(fn)

    @wraps(fn)
    async def wrapper(*args, **kwargs):
        if not audit_logger.enabled:
            return await fn(*args, **kwargs)

        actor = _resolve_actor(actor_fields, args, kwargs, signature)
        payload: dict[str, Any] = {
            "args": [audit_logger.serialize(a) for a in args[1:]],
            "kwargs": {k: audit_logger.serialize(v) for k, v in kwargs.items()},
        }
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            payload["error"] = repr(exc)
            await _emit(action=f"{action}.error", actor=actor, payload=payload)
            raise
        payload["result"] = audit_logger.serialize(result)
        await _emit(action=action, actor=actor, payload=payload)
        return result

    wrapper.__audit_wrapped__ = True  # type: ignore[attr-defined]
    return wrapper


def instrument_service_class(
    cls,
    *,
    prefix: str | None = None,
    exclude: Iterable[str] | None = None,
    actor_fields: Iterable[str] | None = None,
) -> None:
    """Wrap the public coroutine methods of a service class to emit audit entries."""
    action_prefix = prefix or cls.__name__
    excluded = set(exclude or [])

    for name, attr in list(cls.__dict__.items()):
        if name.startswith("_") or name in excluded:
            continue
        if inspect.iscoroutinefunction(attr):
            setattr(cls, name, _wrap_async_callable(attr, f"{action_prefix}.{name}", actor_fields=actor_fields))


__all__ = [
    "AuditLogService",
    "audit_logger",
    "instrument_service_class",
]
