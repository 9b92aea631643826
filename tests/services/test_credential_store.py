"""
Tests for the in-memory and JSON file credential stores.
"""

import json
import os

import pytest

from app.services.credential_store import InMemoryCredentialStore, JsonFileCredentialStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryCredentialStore()
    return JsonFileCredentialStore(tmp_path / "credentials.json")


def test_get_missing_key(store):
    assert store.get("credential:admin") is None


def test_put_get_delete(store):
    store.put("credential:admin", {"access_token": "x", "expires_at_ms": 1})
    assert store.get("credential:admin") == {"access_token": "x", "expires_at_ms": 1}

    store.delete("credential:admin")
    assert store.get("credential:admin") is None
    # Deleting twice is fine
    store.delete("credential:admin")


def test_returned_records_are_copies(store):
    store.put("k", {"value": 1})
    record = store.get("k")
    record["value"] = 2
    assert store.get("k") == {"value": 1}


def test_compare_and_set(store):
    store.put("k", {"expires_at_ms": 100})

    swapped = store.compare_and_set("k", lambda current: current["expires_at_ms"] == 999, {"expires_at_ms": 200})
    assert swapped is False
    assert store.get("k") == {"expires_at_ms": 100}

    swapped = store.compare_and_set("k", lambda current: current["expires_at_ms"] == 100, {"expires_at_ms": 200})
    assert swapped is True
    assert store.get("k") == {"expires_at_ms": 200}


def test_compare_and_set_sees_missing_record(store):
    assert store.compare_and_set("k", lambda current: current is not None, {"v": 1}) is False
    assert store.get("k") is None


def test_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "credentials.json"
    JsonFileCredentialStore(path).put("credential:admin", {"scope": "Chat.ReadWrite"})

    assert JsonFileCredentialStore(path).get("credential:admin") == {"scope": "Chat.ReadWrite"}
    assert json.loads(path.read_text()) == {"credential:admin": {"scope": "Chat.ReadWrite"}}


def test_file_store_is_owner_only(tmp_path):
    path = tmp_path / "credentials.json"
    JsonFileCredentialStore(path).put("k", {"v": 1})
    assert os.stat(path).st_mode & 0o777 == 0o600


def test_file_store_corrupt_file_raises(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text("{not json")
    with pytest.raises(json.JSONDecodeError):
        JsonFileCredentialStore(path).get("k")
