from rewardledger.core.security import bearer_token, issue_token, issue_tokens, refresh_tokens, verify, verify_refresh


def test_issued_token_verifies():
    token = issue_token("42")
    assert verify(token) == "42"


def test_tampered_token_rejected():
    token = issue_token("42")
    assert verify(token.rsplit(".", 1)[0] + ".forged-signature") is None
    assert verify("not-a-token") is None
    assert verify(None) is None


def test_expired_token_rejected():
    token = issue_token("42")
    assert verify(token, max_age=-1) is None


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer  abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer") is None
    assert bearer_token(None) is None


def test_issue_tokens_pair():
    tokens = issue_tokens("42")
    assert tokens["token_type"] == "bearer"
    assert verify(tokens["access_token"]) == "42"
    assert verify_refresh(tokens["refresh_token"]) == "42"


def test_refresh_and_access_tokens_are_not_interchangeable():
    tokens = issue_tokens("42")
    assert verify(tokens["refresh_token"]) is None
    assert verify_refresh(tokens["access_token"]) is None


def test_refresh_tokens_exchanges_for_new_pair():
    tokens = issue_tokens("42")
    refreshed = refresh_tokens(tokens["refresh_token"])
    assert refreshed is not None
    assert verify(refreshed["access_token"]) == "42"
    assert verify_refresh(refreshed["refresh_token"]) == "42"


def test_refresh_tokens_rejects_expired_or_invalid():
    tokens = issue_tokens("42")
    assert refresh_tokens(tokens["refresh_token"], max_age=-1) is None
    assert refresh_tokens("not-a-token") is None
    assert refresh_tokens(None) is None
