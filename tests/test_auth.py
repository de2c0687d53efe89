import pytest
from fastapi import HTTPException

from dalle_mcp.auth import check_token


class TestCheckToken:
    def test_no_token_configured_allows_everything(self):
        check_token(None, None)
        check_token("", "Bearer whatever")

    def test_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            check_token("secret", None)
        assert exc_info.value.status_code == 401

    def test_wrong_scheme(self):
        with pytest.raises(HTTPException) as exc_info:
            check_token("secret", "Basic c2VjcmV0")
        assert exc_info.value.status_code == 401

    def test_wrong_token(self):
        with pytest.raises(HTTPException) as exc_info:
            check_token("secret", "Bearer guess")
        assert exc_info.value.status_code == 403

    def test_empty_bearer(self):
        with pytest.raises(HTTPException) as exc_info:
            check_token("secret", "Bearer ")
        assert exc_info.value.status_code == 403

    def test_correct_token(self):
        check_token("secret", "Bearer secret")
