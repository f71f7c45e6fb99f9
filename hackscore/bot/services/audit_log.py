# bot/services/audit_log.py
from __future__ import annotations

import enum
import inspect
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, ClassVar, Iterable, Mapping, MutableMapping, Optional, Sequence
from contextvars import ContextVar, Token

from hackscore.db.database import DataBase
from hackscore.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from hackscore.db.schemas.user import UserRead
from hackscore.utils.errors import StoreError

logger = logging.getLogger(__name__)


class AuditLogService:
    """
    Centralised helper that stores every scoring mutation in the ``audit_log`` table.

    Payloads are normalised into JSON-friendly dictionaries, enriched with call-site
    metadata and persisted through :class:`hackscore.db.database.DataBase`. The acting
    user is taken from the explicit argument or from the per-update context bound by
    :class:`hackscore.bot.middlewares.user.UserMiddleware`.
    """

    _instance: ClassVar[Optional["AuditLogService"]] = None

    def __new__(cls) -> "AuditLogService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self._logger = logging.getLogger("hackscore.audit")
        self._module_name = Path(__file__).name
        self._actor_ctx: ContextVar[Optional[uuid.UUID]] = ContextVar("audit_actor", default=None)
        self._initialized = True

    @property
    def _database(self) -> DataBase:
        # resolved per call so the module-level instance never opens an engine at import
        return DataBase()

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | None = None,
        payload: Any | None = None,
        include_context: bool = True,
    ) -> AuditLogRead:
        """
        Persist a low-level audit entry.

        :param action: short machine-readable label (``services.submission.submit_vote``…)
        :param actor_id: optional user identifier that initiated the action
        :param payload: arbitrary structure with details (will be serialised)
        :param include_context: whether to attach caller metadata automatically
        """
        payload_map = self._prepare_payload(payload)
        if include_context:
            payload_map.setdefault("_meta", {}).update(self._call_context())

        actor_id = actor_id if actor_id is not None else self.current_actor()

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

    async def log_user_action(
        self,
        *,
        action: str,
        actor: UserRead | uuid.UUID | None,
        payload: Any | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> AuditLogRead:
        """Convenience helper for actions initiated by a known user."""
        actor_id = self._actor_id(actor)
        payload_map: MutableMapping[str, Any] = {}
        if payload is not None:
            payload_map["data"] = self._serialize(payload)
        if isinstance(actor, UserRead):
            payload_map["actor"] = {
                "id": str(actor.id),
                "role": str(actor.role),
                "username": actor.tg_username,
            }
        if extra:
            payload_map["extra"] = self._serialize(extra)
        return await self.log(action=action, actor_id=actor_id, payload=payload_map)

    # --------------
    # Actor context
    # --------------
    def bind_actor(self, actor_id: Optional[uuid.UUID]) -> Token:
        return self._actor_ctx.set(actor_id)

    def unbind_actor(self, token: Token) -> None:
        try:
            self._actor_ctx.reset(token)
        except ValueError:
            # token created in another context
            self._actor_ctx.set(None)

    def current_actor(self) -> Optional[uuid.UUID]:
        return self._actor_ctx.get()

    def _actor_id(self, actor: UserRead | uuid.UUID | None) -> uuid.UUID | None:
        if isinstance(actor, uuid.UUID):
            return actor
        if isinstance(actor, UserRead):
            return actor.id
        return None

    def _prepare_payload(self, payload: Any | None) -> dict[str, Any]:
        if payload is None:
            return {}
        serialized = self._serialize(payload)
        if isinstance(serialized, dict):
            return dict(serialized)
        return {"value": serialized}

    def serialize(self, value: Any) -> Any:
        """Public helper for shared serialization logic."""
        return self._serialize(value)

    def _serialize(self, value: Any) -> Any:
        if isinstance(value, enum.Enum):
            return value.value
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if is_dataclass(value) and not isinstance(value, type):
            return {k: self._serialize(v) for k, v in asdict(value).items()}
        if hasattr(value, "model_dump"):
            return self._serialize(value.model_dump(mode="json"))
        if isinstance(value, Mapping):
            return {str(k): self._serialize(v) for k, v in value.items()}
        if isinstance(value, (set, frozenset)):
            return sorted((self._serialize(v) for v in value), key=str)
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            return [self._serialize(v) for v in value]
        return str(value)

    def _call_context(self) -> dict[str, Any]:
        frame = inspect.currentframe()
        try:
            caller = frame.f_back if frame is not None else None
            while caller is not None:
                path = Path(caller.f_code.co_filename)
                if path.name != self._module_name:
                    return {
                        "module": path.stem,
                        "location": f"{path.name}:{caller.f_lineno}",
                        "function": caller.f_code.co_name,
                    }
                caller = caller.f_back
            return {}
        finally:
            del frame


audit_logger = AuditLogService()


def _resolve_actor(
    actor_fields: Iterable[str] | None,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    signature: inspect.Signature,
) -> UserRead | uuid.UUID | None:
    if not actor_fields:
        return None
    for field in actor_fields:
        candidate = kwargs.get(field)
        if candidate is not None:
            return candidate
    for idx, name in enumerate(signature.parameters):
        if name not in actor_fields:
            continue
        if idx < len(args) and args[idx] is not None:
            return args[idx]
    return None


async def _emit_action(
    *,
    action: str,
    actor: UserRead | uuid.UUID | None,
    payload: dict[str, Any],
) -> None:
    if actor is None:
        actor = audit_logger.current_actor()
    try:
        if actor is not None:
            await audit_logger.log_user_action(action=action, actor=actor, payload=payload)
        else:
            await audit_logger.log(action=action, payload=payload)
    except StoreError:
        # the audited call already committed; its outcome must not be masked
        logger.exception("Failed to persist audit entry %s", action)


def _wrap_async_callable(
    fn,
    action: str,
    *,
    skip_first_arg: bool,
    actor_fields: Iterable[str] | None,
    summarize: Callable[[Any], Any] | None = None,
):
    if getattr(fn, "__audit_wrapped__", False):
        return fn

    signature = inspect.signature(fn)
    skip_count = 1 if skip_first_arg else 0

    @wraps(fn)
    async def wrapper(*args, **kwargs):
        actor = _resolve_actor(actor_fields, args, kwargs, signature)
        payload = {
            "args": [audit_logger.serialize(arg) for arg in args[skip_count:]],
            "kwargs": {k: audit_logger.serialize(v) for k, v in kwargs.items()},
        }
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            payload["error"] = repr(exc)
            await _emit_action(action=f"{action}.error", actor=actor, payload=payload)
            raise
        payload["result"] = audit_logger.serialize(summarize(result) if summarize else result)
        await _emit_action(action=action, actor=actor, payload=payload)
        return result

    wrapper.__audit_wrapped__ = True  # type: ignore[attr-defined]
    return wrapper


def instrument_service_class(
    cls,
    *,
    prefix: str | None = None,
    exclude: Iterable[str] | None = None,
    actor_fields: Iterable[str] | None = ("actor_id", "user_id", "judge_id"),
    summaries: Mapping[str, Callable[[Any], Any]] | None = None,
) -> None:
    """
    Wrap public async methods of a service class to emit audit entries.

    ``summaries`` maps a method name to a callable that condenses its result before it
    is stored.
    """
    action_prefix = prefix or cls.__name__
    excluded = set(exclude or [])
    summaries = summaries or {}

    for name, attr in list(cls.__dict__.items()):
        if name.startswith("_") or name in excluded:
            continue
        if inspect.iscoroutinefunction(attr):
            setattr(
                cls,
                name,
                _wrap_async_callable(
                    attr,
                    f"{action_prefix}.{name}",
                    skip_first_arg=True,
                    actor_fields=actor_fields,
                    summarize=summaries.get(name),
                ),
            )


__all__ = [
    "AuditLogService",
    "audit_logger",
    "instrument_service_class",
]
