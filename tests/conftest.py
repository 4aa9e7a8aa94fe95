import os
import tempfile

import pytest

# Service configuration is read at import time; point it at a scratch
# directory before any avatar_registry.app module is imported.
_TMP = tempfile.mkdtemp(prefix="avatar_registry_test_")
os.environ["AVATAR_REGISTRY_ENV"] = "test"
os.environ["AVATAR_REGISTRY_DB_PATH"] = os.path.join(_TMP, "registry.db")
os.environ["AVATAR_REGISTRY_CALLER_TRUST_STORE"] = os.path.join(_TMP, "caller_trust_store.json")
os.environ["AVATAR_REGISTRY_MEMBERSHIP_SNAPSHOT"] = os.path.join(_TMP, "snapshot.json")
os.environ["AVATAR_REGISTRY_MEMBERSHIP_ORACLE"] = "static"
os.environ["AVATAR_REGISTRY_SEEDER"] = "0x" + "55" * 20
os.environ["AVATAR_REGISTRY_LOG_JSON"] = "0"


@pytest.fixture
def clean_db():
    from avatar_registry.app import db

    db.init_db()
    db.reset_db()
    yield db
    db.reset_db()
