"""
Identity token and join link tests
匿名身份令牌和加入链接测试
"""

from datetime import timedelta

import pytest

from party_game.core.config import settings
from party_game.services.identity import IdentityService
from party_game.utils.links import build_join_url


class TestIdentity:

    def test_token_round_trip(self):
        service = IdentityService()
        token = service.create_token()
        assert service.resolve(token.access_token) == token.user_id

    def test_existing_user_id_is_kept(self):
        token = IdentityService().create_token("device-42")
        assert token.user_id == "device-42"

    @pytest.mark.parametrize("value", [None, "", "not-a-jwt"])
    def test_invalid_tokens_resolve_to_none(self, value):
        assert IdentityService().resolve(value) is None

    def test_expired_token(self):
        service = IdentityService()
        token = service.create_token(expires_delta=timedelta(seconds=-5))
        assert service.resolve(token.access_token) is None


class TestJoinLinks:

    def test_explicit_base_wins(self, monkeypatch):
        monkeypatch.setattr(settings, "SITE_URL", "https://party.example")
        assert build_join_url("abc", base_url="https://other.example/") == "https://other.example/game/abc"

    def test_site_url_over_origin(self, monkeypatch):
        monkeypatch.setattr(settings, "SITE_URL", "https://party.example/")
        assert build_join_url("abc", origin="http://localhost:8000") == "https://party.example/game/abc"

    def test_origin_fallback_and_quoting(self, monkeypatch):
        monkeypatch.setattr(settings, "SITE_URL", None)
        assert build_join_url("a b", origin="http://localhost:8000") == "http://localhost:8000/game/a%20b"

    def test_no_base_available(self, monkeypatch):
        monkeypatch.setattr(settings, "SITE_URL", None)
        with pytest.raises(ValueError):
            build_join_url("abc")
