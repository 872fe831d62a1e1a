import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from mob_maps.db.database import DataBase, translate_db_error
from mob_maps.errors import (
    AlreadyMember,
    ConcurrentConflict,
    InvalidClip,
    InvalidInviteCode,
    MobMapsError,
    NotAuthenticated,
    PermissionDenied,
    StorageUnavailable,
    UnguardedLedgerWrite,
)
from mob_maps.i18n import Localizer, lang_code2language


class FakePgError(Exception):
    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def test_lock_and_serialization_failures_become_conflicts():
    locked = OperationalError("UPDATE clips", {}, Exception("database is locked"))
    serialization = OperationalError("UPDATE clips", {}, FakePgError("could not serialize access", "40001"))
    deadlock = OperationalError("UPDATE clips", {}, FakePgError("boom", "40P01"))

    for exc in (locked, serialization, deadlock):
        assert isinstance(translate_db_error(exc), ConcurrentConflict)


def test_connection_failures_become_unavailable():
    invalidated = DBAPIError("SELECT 1", {}, Exception("server closed the connection"), connection_invalidated=True)
    interface = InterfaceError("SELECT 1", {}, Exception("connection is closed"))
    refused = OperationalError("SELECT 1", {}, Exception("connection refused"))

    for exc in (invalidated, interface, refused):
        assert isinstance(translate_db_error(exc), StorageUnavailable)


def test_integrity_errors_are_left_to_the_caller():
    exc = IntegrityError("INSERT INTO votes", {}, Exception("UNIQUE constraint failed"))
    assert translate_db_error(exc) is exc


async def test_session_translates_and_rolls_back():
    with pytest.raises(ConcurrentConflict):
        async with DataBase().session():
            raise OperationalError("UPDATE spots", {}, Exception("database is locked"))

    with pytest.raises(StorageUnavailable):
        async with DataBase().session():
            raise ConnectionRefusedError("no route")


async def test_business_errors_pass_through_the_session():
    with pytest.raises(AlreadyMember):
        async with DataBase().session():
            raise AlreadyMember("already in a team")


@pytest.mark.parametrize("error_cls", [PermissionDenied, NotAuthenticated])
async def test_permission_errors_are_not_storage_failures(error_cls):
    # both derive from PermissionError, an OSError subclass
    with pytest.raises(error_cls) as info:
        async with DataBase().session():
            raise error_cls("nope")
    assert not isinstance(info.value, StorageUnavailable)
    assert info.value.code == error_cls.code


def test_error_kinds_and_bases():
    assert issubclass(NotAuthenticated, PermissionError)
    assert issubclass(InvalidClip, LookupError)
    assert issubclass(UnguardedLedgerWrite, RuntimeError)
    assert all(issubclass(cls, MobMapsError) for cls in (ConcurrentConflict, StorageUnavailable, AlreadyMember))
    assert ConcurrentConflict().code == "concurrent_conflict"
    assert str(InvalidClip("clip x is gone")) == "clip x is gone"


def test_user_messages():
    assert "try again" in ConcurrentConflict().user_message()
    assert InvalidInviteCode(code="ABC123").user_message() == "Invite code ABC123 does not match any mob."
    # missing format arguments do not break rendering
    assert InvalidInviteCode().user_message() == "Invite code ? does not match any mob."
    # unknown languages fall back to the default one
    assert NotAuthenticated().user_message("klingon") == Localizer("english").get("errors.not_authenticated")


def test_localizer_lookup():
    assert lang_code2language("en") == "english"
    assert lang_code2language(None) == "english"
    with pytest.raises(KeyError):
        Localizer().get("errors.no_such_key")
