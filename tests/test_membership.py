import json

import pytest
import requests

from avatar_registry import (
    AvatarRegistry,
    HttpMembershipOracle,
    OpenMembershipOracle,
    OracleUnavailable,
    StaticMembershipOracle,
    ZERO_DIGEST,
    is_recognized_member,
)

USER = bytes([0x11]) * 20
ORG = bytes([0x22]) * 20
STRANGER = bytes([0x33]) * 20
SEEDER = bytes([0x55]) * 20
TOKEN = bytes([0xAA]) * 20


class FakeResponse:
    def __init__(self, status_code=200, body=None, raw=None):
        self.status_code = status_code
        self._body = body
        self._raw = raw

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._raw is not None:
            return json.loads(self._raw)
        return self._body


class FakeSession:
    """Maps URL suffixes to canned responses and records requested URLs."""

    def __init__(self, routes):
        self.routes = routes
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404)


def _hex(identity):
    return "0x" + identity.hex()


def test_static_oracle_from_dict():
    oracle = StaticMembershipOracle.from_dict({
        "tokens": {_hex(USER): _hex(TOKEN)},
        "organizations": [_hex(ORG)],
    })
    assert oracle.token_of(USER) == TOKEN
    assert oracle.is_organization(ORG)
    assert is_recognized_member(oracle, USER)
    assert is_recognized_member(oracle, ORG)
    assert not is_recognized_member(oracle, STRANGER)


def test_static_oracle_from_file(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"tokens": {}, "organizations": [_hex(ORG)]}), encoding="utf-8")
    oracle = StaticMembershipOracle.from_file(str(path))
    assert is_recognized_member(oracle, ORG)
    assert oracle.token_of(ORG) is None


def test_static_oracle_rejects_malformed_snapshot():
    with pytest.raises(ValueError):
        StaticMembershipOracle.from_dict({"organizations": ["0x1234"]})


def test_static_oracle_membership_changes():
    oracle = StaticMembershipOracle()
    oracle.add_organization(ORG)
    assert is_recognized_member(oracle, ORG)
    oracle.remove_organization(ORG)
    assert not is_recognized_member(oracle, ORG)


def test_open_oracle_recognizes_everyone():
    oracle = OpenMembershipOracle()
    assert is_recognized_member(oracle, STRANGER)
    registry = AvatarRegistry(oracle, seeder=SEEDER)
    registry.self_update(STRANGER, bytes([1]) * 32)
    assert registry.get_digest(STRANGER) == bytes([1]) * 32


def test_http_oracle_token_member():
    session = FakeSession({
        f"/token_of/{_hex(USER)}": FakeResponse(body={"token": _hex(TOKEN)}),
    })
    oracle = HttpMembershipOracle("http://oracle.local/", session=session)
    assert is_recognized_member(oracle, USER)
    assert session.urls == [f"http://oracle.local/token_of/{_hex(USER)}"]


def test_http_oracle_organization_member():
    session = FakeSession({
        f"/token_of/{_hex(ORG)}": FakeResponse(body={"token": None}),
        f"/is_organization/{_hex(ORG)}": FakeResponse(body={"is_organization": True}),
    })
    oracle = HttpMembershipOracle("http://oracle.local", session=session)
    assert is_recognized_member(oracle, ORG)
    assert len(session.urls) == 2


def test_http_oracle_non_member():
    session = FakeSession({
        f"/token_of/{_hex(STRANGER)}": FakeResponse(body={"token": None}),
        f"/is_organization/{_hex(STRANGER)}": FakeResponse(body={"is_organization": False}),
    })
    oracle = HttpMembershipOracle("http://oracle.local", session=session)
    assert not is_recognized_member(oracle, STRANGER)


def test_http_oracle_transport_error_fails_closed():
    session = FakeSession({
        f"/token_of/{_hex(USER)}": requests.ConnectionError("refused"),
    })
    oracle = HttpMembershipOracle("http://oracle.local", session=session)
    with pytest.raises(OracleUnavailable):
        oracle.token_of(USER)


def test_http_oracle_server_error_fails_closed():
    session = FakeSession({
        f"/token_of/{_hex(USER)}": FakeResponse(status_code=500),
    })
    oracle = HttpMembershipOracle("http://oracle.local", session=session)
    with pytest.raises(OracleUnavailable):
        oracle.token_of(USER)


def test_http_oracle_malformed_bodies():
    session = FakeSession({
        f"/token_of/{_hex(USER)}": FakeResponse(body={"token": "0xnothex"}),
        f"/is_organization/{_hex(USER)}": FakeResponse(body={"is_organization": "yes"}),
        f"/token_of/{_hex(ORG)}": FakeResponse(raw="not json"),
        f"/token_of/{_hex(STRANGER)}": FakeResponse(body=["not", "an", "object"]),
        f"/is_organization/{_hex(STRANGER)}": FakeResponse(body="true"),
    })
    oracle = HttpMembershipOracle("http://oracle.local", session=session)
    with pytest.raises(OracleUnavailable):
        oracle.token_of(USER)
    with pytest.raises(OracleUnavailable):
        oracle.is_organization(USER)
    with pytest.raises(OracleUnavailable):
        oracle.token_of(ORG)
    with pytest.raises(OracleUnavailable):
        oracle.token_of(STRANGER)
    with pytest.raises(OracleUnavailable):
        oracle.is_organization(STRANGER)


def test_oracle_outage_leaves_batch_unapplied():
    session = FakeSession({
        f"/token_of/{_hex(USER)}": FakeResponse(body={"token": _hex(TOKEN)}),
        f"/token_of/{_hex(ORG)}": requests.Timeout("slow"),
    })
    registry = AvatarRegistry(HttpMembershipOracle("http://oracle.local", session=session), seeder=SEEDER)

    with pytest.raises(OracleUnavailable):
        registry.batch_update(SEEDER, [USER, ORG], [bytes([1]) * 32, bytes([2]) * 32])

    assert registry.get_digest(USER) == ZERO_DIGEST
    assert registry.get_digest(ORG) == ZERO_DIGEST
