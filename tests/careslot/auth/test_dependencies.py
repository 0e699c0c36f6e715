import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from careslot.auth import dependencies
from careslot.auth.jwt_handler import create_access_token, decode_access_token


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trip() -> None:
    payload = decode_access_token(create_access_token('family@example.org', role='family'))

    assert payload['sub'] == 'family@example.org'
    assert payload['role'] == 'family'


def test_get_current_user_resolves_token_subject(session_factory, monkeypatch) -> None:
    monkeypatch.setattr(dependencies, 'SessionLocal', session_factory)

    user = dependencies.get_current_user(_credentials(create_access_token('doctor@example.org')))

    assert user.id == 1
    assert user.role == 'doctor'


@pytest.mark.parametrize(
    ('token', 'detail'),
    [
        ('not-a-jwt', 'Invalid token'),
        (create_access_token(''), 'Invalid token subject'),
        (create_access_token('stranger@example.org'), 'User not found'),
    ],
)
def test_get_current_user_rejects_bad_tokens(session_factory, monkeypatch, token: str, detail: str) -> None:
    monkeypatch.setattr(dependencies, 'SessionLocal', session_factory)

    with pytest.raises(HTTPException) as exception_info:
        dependencies.get_current_user(_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == detail


def test_staff_guard_rejects_families(users) -> None:
    dependencies.ensure_staff(users['doctor'])
    dependencies.ensure_staff(users['admin'])

    with pytest.raises(HTTPException) as exception_info:
        dependencies.get_staff_user(users['family'])

    assert exception_info.value.status_code == 403
