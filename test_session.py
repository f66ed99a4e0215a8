import pytest
from datetime import timedelta
from passlib.hash import bcrypt

from auth import Directory, create_session_token
from database import Database
from errors import AuthFailed, NotFound, ValidationError
from models import Member
from session import SessionContext, guard, session_key

FAST_HASH = bcrypt.using(rounds=4).hash("password123")


@pytest.fixture
def db(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def directory():
    directory = Directory("uni.test")
    directory.add_member(Member(id=1, name="Sam Member", email="sam@uni.test"), password_hash=FAST_HASH)
    directory.add_member(Member(id=2, name="Casey Committee", email="casey@uni.test", role="committee"), password_hash=FAST_HASH)
    directory.add_member(Member(id=3, name="Ada Admin", email="ada@uni.test", role="admin"), password_hash=FAST_HASH)
    return directory


@pytest.fixture
def session(db, directory):
    return SessionContext(db, directory)


def test_starts_unauthenticated(session):
    assert session.state == "unauthenticated"
    assert session.user is None
    assert not session.is_committee


def test_login_success_persists_session(session, db):
    member = session.login("Sam@uni.test", "password123")
    assert member.id == 1
    assert session.state == "authenticated"
    assert session.token
    assert db.get_item(session_key(session.session_id))["uid"] == 1


def test_login_wrong_domain(session):
    with pytest.raises(AuthFailed) as exc:
        session.login("sam@gmail.com", "password123")
    assert "@uni.test" in exc.value.message
    assert session.state == "unauthenticated"


def test_login_wrong_password(session, db):
    with pytest.raises(AuthFailed):
        session.login("sam@uni.test", "nope")
    assert session.state == "unauthenticated"
    assert session.token is None


def test_login_unknown_account(session):
    with pytest.raises(AuthFailed):
        session.login("ghost@uni.test", "password123")


def test_login_missing_fields(session):
    with pytest.raises(ValidationError) as exc:
        session.login("", "")
    assert set(exc.value.errors) == {"email", "password"}


def test_role_flags(session):
    session.login("casey@uni.test", "password123")
    assert session.is_committee
    assert not session.is_admin
    session.logout()
    session.login("ada@uni.test", "password123")
    assert session.is_committee
    assert session.is_admin


def test_logout_clears_persisted_session(session, db):
    session.login("sam@uni.test", "password123")
    key = session_key(session.session_id)
    session.logout()
    assert session.state == "unauthenticated"
    assert session.user is None
    assert session.token is None
    assert db.get_item(key) is None


def test_load_restores_session(session, db, directory):
    session.login("casey@uni.test", "password123")
    restored = SessionContext(db, directory).load(session.token)
    assert restored.is_authenticated
    assert restored.user.id == 2
    assert restored.session_id == session.session_id


def test_load_without_token(db, directory):
    assert not SessionContext(db, directory).load(None).is_authenticated


def test_logged_out_token_no_longer_loads(session, db, directory):
    session.login("sam@uni.test", "password123")
    token = session.token
    session.logout()
    assert not SessionContext(db, directory).load(token).is_authenticated


def test_sessions_are_independent(db, directory):
    first = SessionContext(db, directory)
    second = SessionContext(db, directory)
    first.login("sam@uni.test", "password123")
    second.login("ada@uni.test", "password123")
    assert first.session_id != second.session_id

    second.logout()
    assert SessionContext(db, directory).load(first.token).user.id == 1
    assert not SessionContext(db, directory).load(second.token).is_authenticated


def test_load_discards_tampered_token(db, directory):
    session = SessionContext(db, directory).load("not-a-token")
    assert not session.is_authenticated


def test_load_discards_expired_token(db, directory):
    db.set_item(session_key("abc"), {"uid": 1})
    token = create_session_token(directory.get(1), expires_delta=timedelta(seconds=-10), session_id="abc")
    session = SessionContext(db, directory).load(token)
    assert not session.is_authenticated


def test_load_rejects_token_without_session_record(db, directory):
    token = create_session_token(directory.get(1))
    assert not SessionContext(db, directory).load(token).is_authenticated


def test_load_discards_session_for_removed_member(db):
    ghost = Member(id=42, name="Ghost", email="ghost@uni.test")
    db.set_item(session_key("abc"), {"uid": 42})
    session = SessionContext(db, Directory("uni.test")).load(create_session_token(ghost, session_id="abc"))
    assert not session.is_authenticated
    assert db.get_item(session_key("abc")) is None



def test_guard_without_session(session):
    assert guard(session) == "/"
    assert guard(session, require_committee=True) == "/"
    assert guard(session, require_admin=True) == "/"


def test_guard_member(session):
    session.login("sam@uni.test", "password123")
    assert guard(session) is None
    assert guard(session, require_committee=True) == "/dashboard"
    assert guard(session, require_admin=True) == "/dashboard"


def test_guard_committee(session):
    session.login("casey@uni.test", "password123")
    assert guard(session, require_committee=True) is None
    assert guard(session, require_admin=True) == "/admin"


def test_guard_admin(session):
    session.login("ada@uni.test", "password123")
    assert guard(session, require_committee=True) is None
    assert guard(session, require_admin=True) is None


def test_promote_to_committee(directory):
    member = directory.promote_to_committee(1)
    assert member.role == "committee"
    assert directory.promote_to_committee(3).role == "admin"
    with pytest.raises(NotFound):
        directory.promote_to_committee(99)


def test_duplicate_email_rejected(directory):
    with pytest.raises(ValidationError):
        directory.add_member(Member(id=9, name="Copy", email="SAM@uni.test"))
