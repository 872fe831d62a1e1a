# errors.py
"""
Typed failures returned by the engine.

Every error carries a stable ``code`` for programmatic handling and a
``message_key`` that :class:`mob_maps.i18n.Localizer` turns into an
actionable, user-facing sentence.
"""
from typing import Any, Optional


class MobMapsError(Exception):
    code: str = "error"
    message_key: str = "errors.unknown"

    def __init__(self, detail: Optional[str] = None, **context: Any) -> None:
        self.detail = detail or self.code
        self.context = context
        super().__init__(self.detail)

    def user_message(self, lang: Optional[str] = None) -> str:
        from mob_maps.i18n import Localizer

        return Localizer(lang).get(self.message_key, **self.context)


class NotAuthenticated(MobMapsError, PermissionError):
    code = "not_authenticated"
    message_key = "errors.not_authenticated"


class PermissionDenied(MobMapsError, PermissionError):
    code = "permission_denied"
    message_key = "errors.permission_denied"


class InvalidClip(MobMapsError, LookupError):
    code = "invalid_clip"
    message_key = "errors.invalid_clip"


class InvalidSpot(MobMapsError, LookupError):
    code = "invalid_spot"
    message_key = "errors.invalid_spot"


class InvalidInviteCode(MobMapsError, LookupError):
    code = "invalid_invite_code"
    message_key = "errors.invalid_invite_code"


class VoteNotFound(MobMapsError, LookupError):
    code = "not_found"
    message_key = "errors.vote_not_found"


class DuplicateVote(MobMapsError):
    code = "duplicate_vote"
    message_key = "errors.duplicate_vote"


class AlreadyMember(MobMapsError):
    code = "already_member"
    message_key = "errors.already_member"


class ConcurrentConflict(MobMapsError):
    """The unit of work lost a race; the caller must retry the whole call."""
    code = "concurrent_conflict"
    message_key = "errors.concurrent_conflict"


class StorageUnavailable(MobMapsError):
    code = "storage_unavailable"
    message_key = "errors.storage_unavailable"


class UnguardedLedgerWrite(MobMapsError, RuntimeError):
    code = "unguarded_ledger_write"
    message_key = "errors.internal"


__all__ = [
    "MobMapsError",
    "NotAuthenticated",
    "PermissionDenied",
    "InvalidClip",
    "InvalidSpot",
    "InvalidInviteCode",
    "VoteNotFound",
    "DuplicateVote",
    "AlreadyMember",
    "ConcurrentConflict",
    "StorageUnavailable",
    "UnguardedLedgerWrite",
]
