"""
Tests for api/auth.py -- admin bearer token check.

The HTTP-level behaviour (401 on every admin route) is covered in
test_api.py; these exercise the comparison and the dependency directly.
"""

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from api.auth import check_admin_key, require_admin


def _request(admin_key: str):
    """Minimal stand-in exposing request.app.state.admin_key."""
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(admin_key=admin_key)))


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ---------------------------------------------------------------------------
# check_admin_key
# ---------------------------------------------------------------------------


class TestCheckAdminKey:
    def test_matching_key(self):
        assert check_admin_key("s3cret", "s3cret") is True

    def test_wrong_key(self):
        assert check_admin_key("s3cre", "s3cret") is False

    def test_missing_key(self):
        assert check_admin_key(None, "s3cret") is False
        assert check_admin_key("", "s3cret") is False

    def test_unset_admin_key_never_matches(self):
        """An empty configured key must not authorize an empty token."""
        assert check_admin_key("", "") is False
        assert check_admin_key(None, "") is False
        assert check_admin_key("anything", "") is False

    def test_non_ascii(self):
        assert check_admin_key("clé", "clé") is True
        assert check_admin_key("cle", "clé") is False


# ---------------------------------------------------------------------------
# require_admin
# ---------------------------------------------------------------------------


class TestRequireAdmin:
    async def test_accepts_valid_bearer(self):
        await require_admin(_request("s3cret"), _bearer("s3cret"))

    async def test_rejects_missing_credentials(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(_request("s3cret"), None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "unauthorized"

    async def test_rejects_wrong_token(self):
        with pytest.raises(HTTPException) as exc_info:
            await require_admin(_request("s3cret"), _bearer("guess"))

        assert exc_info.value.status_code == 401
