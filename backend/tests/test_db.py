from db import DOCUMENT_TTL, get_config, save_config


def test_missing_session_returns_empty(db_path):
    assert get_config("nobody") == {}


def test_save_creates_then_updates(db_path):
    assert save_config("s1", {"lightsOn": False, "_id": "abc"}, now=100.0) is True
    assert get_config("s1", now=101.0) == {"lightsOn": False}

    assert save_config("s1", {"lightsOn": True}, now=200.0) is False
    assert get_config("s1", now=201.0) == {"lightsOn": True}


def test_documents_expire_after_ttl(db_path):
    save_config("s1", {"stool": {}}, now=0.0)
    save_config("s2", {"stool": {}}, now=DOCUMENT_TTL / 2)

    assert get_config("s1", now=DOCUMENT_TTL - 1) == {"stool": {}}
    assert get_config("s1", now=DOCUMENT_TTL + 1) == {}
    assert get_config("s2", now=DOCUMENT_TTL + 1) == {"stool": {}}


def test_writes_refresh_expiry(db_path):
    save_config("s1", {"a": 1}, now=0.0)
    save_config("s1", {"a": 2}, now=DOCUMENT_TTL - 10)
    assert get_config("s1", now=DOCUMENT_TTL + 10) == {"a": 2}
