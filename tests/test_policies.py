"""Tests for the role policy table and token handling."""

from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.exceptions import ForbiddenException
from app.core.policies import (
    POLICY,
    Actor,
    Role,
    ensure_allowed,
    ensure_doctor_scope,
    ensure_patient_scope,
    is_allowed,
)
from app.core.security import actor_from_payload, create_access_token, decode_access_token


@pytest.mark.parametrize(
    ("operation", "role", "allowed"),
    [
        ("appointments:create", Role.PATIENT, True),
        ("appointments:create", Role.DOCTOR, False),
        ("appointments:list", Role.PATIENT, False),
        ("appointments:list", Role.DOCTOR, True),
        ("schedules:create", Role.PATIENT, False),
        ("schedules:availability", Role.PATIENT, True),
        ("queue:join", Role.PATIENT, True),
        ("queue:call", Role.PATIENT, False),
        ("queue:cancel", Role.PATIENT, True),
        ("clinical:read", Role.ADMIN, True),
        ("reports:export", Role.ADMIN, False),
    ],
)
def test_policy_table(operation, role, allowed):
    assert is_allowed(operation, Actor(id="x", role=role)) is allowed


def test_admin_may_do_everything_listed():
    admin = Actor(id="root", role=Role.ADMIN)
    for operation in POLICY:
        ensure_allowed(operation, admin)


def test_ensure_allowed_reports_operation():
    with pytest.raises(ForbiddenException) as exc_info:
        ensure_allowed("schedules:delete", Actor(id="p", role=Role.PATIENT))
    assert exc_info.value.code == "FORBIDDEN"
    assert exc_info.value.extra == {"operation": "schedules:delete", "role": "PACIENTE"}


def test_ownership_scopes():
    doctor_id = str(uuid4())
    doctor = Actor(id=doctor_id, role=Role.DOCTOR)
    ensure_doctor_scope(doctor, doctor_id)
    with pytest.raises(ForbiddenException):
        ensure_doctor_scope(doctor, uuid4())

    patient = Actor(id="user-1", role=Role.PATIENT)
    ensure_patient_scope(patient, "profile-1", "user-1")
    with pytest.raises(ForbiddenException):
        ensure_patient_scope(patient, "profile-1", None)

    # scopes only bind their own role
    ensure_patient_scope(doctor, "profile-1")
    ensure_doctor_scope(patient, doctor_id)


def test_token_round_trip():
    token = create_access_token({"id": "u-1", "role": "MEDICO"}, timedelta(minutes=5))
    payload = decode_access_token(token)
    assert payload["type"] == "access"
    assert actor_from_payload(payload) == Actor(id="u-1", role=Role.DOCTOR)


def test_expired_and_refresh_tokens_are_rejected():
    expired = create_access_token({"id": "u-1", "role": "MEDICO"}, timedelta(minutes=-1))
    assert decode_access_token(expired) is None
    assert decode_access_token("not-a-token") is None


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"sub": "u-1", "role": "administrador"}, Actor(id="u-1", role=Role.ADMIN)),
        ({"id": "u-2", "roles": ["PACIENTE", "MEDICO"]}, Actor(id="u-2", role=Role.PATIENT)),
        ({"id": "u-3", "role": "Médico"}, Actor(id="u-3", role=Role.DOCTOR)),
        ({"id": "u-4", "role": "NURSE"}, None),
        ({"role": "MEDICO"}, None),
        ({"id": "u-5"}, None),
    ],
)
def test_actor_from_payload(payload, expected):
    assert actor_from_payload(payload) == expected
