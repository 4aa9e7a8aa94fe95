import json

import pytest
from fastapi.testclient import TestClient

from avatar_registry import CallerKey, HttpMembershipOracle, StaticMembershipOracle, digest_to_cid, sign_request
from avatar_registry.app import config, main
from avatar_registry.app.rate_limit import RateLimiter

USER = bytes([0x11]) * 20
ORG = bytes([0x22]) * 20
STRANGER = bytes([0x33]) * 20
SEEDER = bytes([0x55]) * 20
USER_TOKEN = bytes([0xAA]) * 20

D1 = "0x" + "ab" * 32
D2 = "0x" + "cd" * 32
D3 = "0x" + "ef" * 32
ZERO = "0x" + "00" * 32

client = TestClient(main.app)


def h(identity):
    return "0x" + identity.hex()


@pytest.fixture
def keys(clean_db, monkeypatch):
    keys = {who: CallerKey.generate(who) for who in (USER, ORG, STRANGER, SEEDER)}
    trust = {"caller_keys": dict(k.to_trust_store_entry() for k in keys.values())}
    with open(config.CALLER_TRUST_STORE_PATH, "w", encoding="utf-8") as f:
        json.dump(trust, f)
    config.invalidate_config_cache()

    oracle = StaticMembershipOracle()
    oracle.set_token(USER, USER_TOKEN)
    oracle.add_organization(ORG)
    monkeypatch.setattr(main, "REGISTRY", main.build_registry(oracle))
    main.self_update_limiter.reset()
    main.seeder_limiter.reset()
    return keys


def self_update(key, digest):
    return client.post("/avatars/digest", json=sign_request({"digest": digest}, key))


def batch(key, identities, digests):
    body = {"identities": identities, "digests": digests}
    return client.post("/seeder/batch", json=sign_request(body, key))


def renounce(key):
    return client.post("/seeder/renounce", json=sign_request({}, key))


def digest_of(identity):
    return client.get(f"/avatars/{h(identity)}/digest").json()["digest"]


# Scenario A: a token holder sets its own digest
def test_token_holder_self_update(keys):
    r = self_update(keys[USER], D1)
    assert r.status_code == 200
    assert r.json() == {"identity": h(USER), "digest": D1, "cid": digest_to_cid(D1)}
    assert digest_of(USER) == D1


# Scenario B: an organization sets its own digest
def test_organization_self_update(keys):
    assert self_update(keys[ORG], D2).status_code == 200
    assert digest_of(ORG) == D2


# Scenario C: unrecognized callers are refused
def test_stranger_self_update_forbidden(keys):
    r = self_update(keys[STRANGER], D1)
    assert r.status_code == 403
    assert r.json()["detail"] == "INVALID_MEMBER"
    assert digest_of(STRANGER) == ZERO


# Scenario D: the seeder updates many members at once
def test_seeder_batch(keys):
    r = batch(keys[SEEDER], [h(USER), h(ORG)], [D1, D2])
    assert r.status_code == 200
    assert r.json() == {"status": "UPDATED", "count": 2}
    assert digest_of(USER) == D1
    assert digest_of(ORG) == D2

    events = client.get("/events").json()
    assert [e["identity"] for e in events] == [h(USER), h(ORG)]


# Scenario E: one unrecognized entry rejects the whole batch
def test_batch_with_stranger_rejected(keys):
    assert self_update(keys[USER], D3).status_code == 200

    r = batch(keys[SEEDER], [h(USER), h(STRANGER)], [D1, D2])
    assert r.status_code == 403
    assert r.json()["detail"] == "INVALID_MEMBER"
    assert digest_of(USER) == D3


# Scenario F: renunciation closes batch updates
def test_renounce_closes_batches(keys):
    r = renounce(keys[SEEDER])
    assert r.status_code == 200
    assert r.json() == {"seeder": None}
    assert client.get("/seeder").json() == {"seeder": None}

    r = batch(keys[SEEDER], [h(USER)], [D3])
    assert r.status_code == 403
    assert r.json()["detail"] == "UNAUTHORIZED_SEEDER"
    assert digest_of(USER) == ZERO


def test_get_seeder(keys):
    assert client.get("/seeder").json() == {"seeder": h(SEEDER)}


def test_unset_digest_has_no_cid(keys):
    body = client.get(f"/avatars/{h(USER)}/digest").json()
    assert body == {"identity": h(USER), "digest": ZERO, "cid": None}


def test_non_seeder_batch_forbidden(keys):
    r = batch(keys[USER], [h(USER)], [D1])
    assert r.status_code == 403
    assert r.json()["detail"] == "UNAUTHORIZED_SEEDER"


def test_non_seeder_renounce_forbidden(keys):
    r = renounce(keys[USER])
    assert r.status_code == 403
    assert client.get("/seeder").json() == {"seeder": h(SEEDER)}


def test_batch_length_mismatch(keys):
    r = batch(keys[SEEDER], [h(USER), h(ORG)], [D1])
    assert r.status_code == 400
    assert r.json()["detail"] == "LENGTH_MISMATCH"


def test_seeder_check_precedes_length_check(keys):
    r = batch(keys[USER], [h(USER), h(ORG)], [D1])
    assert r.status_code == 403
    assert r.json()["detail"] == "UNAUTHORIZED_SEEDER"


def test_empty_batch_succeeds(keys):
    r = batch(keys[SEEDER], [], [])
    assert r.status_code == 200
    assert r.json()["count"] == 0
    assert client.get("/events").json() == []


def test_malformed_inputs(keys):
    assert self_update(keys[USER], "0x1234").status_code == 400
    assert batch(keys[SEEDER], ["0xnothex"], [D1]).status_code == 400
    assert client.get("/avatars/0x1234/digest").status_code == 400
    assert client.get("/events", params={"identity": "zz"}).status_code == 400


def test_tampered_request_rejected(keys):
    signed = sign_request({"digest": D1}, keys[USER])
    signed["digest"] = D2
    r = client.post("/avatars/digest", json=signed)
    assert r.status_code == 401
    assert r.json()["detail"] == "INVALID_CALLER_PROOF"
    assert digest_of(USER) == ZERO


def test_unknown_caller_key_rejected(keys):
    outsider = CallerKey.generate(bytes([0x77]) * 20)
    r = self_update(outsider, D1)
    assert r.status_code == 401


def test_replayed_request_rejected(keys):
    signed = sign_request({"digest": D1}, keys[USER])
    assert client.post("/avatars/digest", json=signed).status_code == 200
    r = client.post("/avatars/digest", json=signed)
    assert r.status_code == 401
    assert r.json()["detail"] == "REPLAY"


def test_rate_limit(keys, monkeypatch):
    monkeypatch.setattr(main, "self_update_limiter", RateLimiter(1))
    assert self_update(keys[USER], D1).status_code == 200
    r = self_update(keys[USER], D2)
    assert r.status_code == 429
    assert r.json()["detail"] == "RATE_LIMIT"


def test_events_filtered_by_identity(keys):
    self_update(keys[USER], D1)
    self_update(keys[ORG], D2)
    self_update(keys[USER], D3)

    events = client.get("/events", params={"identity": h(USER)}).json()
    assert [e["digest"] for e in events] == [D1, D3]


def test_events_proof(keys):
    batch(keys[SEEDER], [h(USER), h(ORG)], [D1, D2])
    proof = client.get("/events/proof").json()
    assert proof["entries"] == 2
    assert proof["chain_valid"] is True
    assert proof["head_entry_hash"] == client.get("/events").json()[-1]["entry_hash"]


def test_health(keys):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["config"]["caller_trust_store"] is True
    assert body["db"]["digests_count"] == 0
    assert body["rate_limit_keys"] == 0


def test_request_id_echoed(keys):
    r = client.get("/seeder", headers={"x-request-id": "req-42"})
    assert r.headers["x-request-id"] == "req-42"
    assert client.get("/seeder").headers["x-request-id"]


class ListBodySession:
    """Answers every oracle lookup with a JSON list."""

    def get(self, url, timeout=None):
        return self

    def raise_for_status(self):
        pass

    def json(self):
        return ["not", "an", "object"]


def test_malformed_oracle_body_is_unavailable(keys, monkeypatch):
    oracle = HttpMembershipOracle("http://oracle.local", session=ListBodySession())
    monkeypatch.setattr(main, "REGISTRY", main.build_registry(oracle))

    r = self_update(keys[USER], D1)
    assert r.status_code == 503
    assert r.json()["detail"] == "ORACLE_UNAVAILABLE"
    assert digest_of(USER) == ZERO


def test_omitted_optional_fields_keep_signature_valid(keys):
    # digests defaults to [] server side; the signature covers only what was sent
    signed = sign_request({"identities": []}, keys[SEEDER])
    r = client.post("/seeder/batch", json=signed)
    assert r.status_code == 200
    assert r.json() == {"status": "UPDATED", "count": 0}
