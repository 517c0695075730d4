import time
from types import SimpleNamespace

import owner_tokens
from owner_tokens import issue_owner_token, resolve_owner_id


def test_token_round_trips_owner_id():
    token = issue_owner_token(42)
    assert resolve_owner_id(token) == 42


def test_tampered_token_is_rejected():
    token = issue_owner_token(42)
    other = issue_owner_token(7)
    tampered = other.rsplit(".", 1)[0] + "." + token.rsplit(".", 1)[1]
    assert resolve_owner_id(tampered) is None
    assert resolve_owner_id("not-a-token") is None


def test_expired_token_is_rejected(monkeypatch):
    token = issue_owner_token(42, max_age_hours=12)
    later = time.time() + 13 * 3600
    monkeypatch.setattr(owner_tokens, "time", SimpleNamespace(time=lambda: later))
    assert resolve_owner_id(token) is None
