"""
Unit tests for configuration schemas, endpoints and the handler registry.
"""
import pytest

from glance_relay.config import DelegatedConfig, Endpoints, RefreshTokenConfig, parse_handler_config
from glance_relay.errors import ConfigInvalid
from glance_relay.providers import SpotifyFreeHandler, SpotifyHandler, available_handlers, create_handler


class TestHandlerConfig:

    def test_camel_case_fields(self):
        config = parse_handler_config(RefreshTokenConfig, {
            "clientId": "id", "clientSecret": "secret", "refreshToken": "rt",
        })
        assert config.client_id == "id"
        assert config.web_session_seed is None

    def test_missing_field(self):
        with pytest.raises(ConfigInvalid) as exc:
            parse_handler_config(RefreshTokenConfig, {"clientId": "id", "clientSecret": "secret"})
        assert "refreshToken" in str(exc.value)

    def test_empty_value_rejected(self):
        with pytest.raises(ConfigInvalid):
            parse_handler_config(DelegatedConfig, {"brokerToken": "", "brokerConnectionId": "c"})

    def test_not_an_object(self):
        with pytest.raises(ConfigInvalid):
            parse_handler_config(DelegatedConfig, ["brokerToken"])

    def test_to_store_round_trip(self):
        raw = {"brokerToken": "t", "brokerConnectionId": "c", "webSessionSeed": "s"}
        config = parse_handler_config(DelegatedConfig, raw)
        assert config.to_store() == raw


class TestEndpoints:

    def test_local(self):
        endpoints = Endpoints.local("http://127.0.0.1:9000/")
        assert endpoints.api_base == "http://127.0.0.1:9000/v1"
        assert endpoints.dealer_url == "ws://127.0.0.1:9000/dealer"
        assert endpoints.broker_token_url.format(connection_id="abc") == "http://127.0.0.1:9000/broker/abc/access-token"

    def test_local_https(self):
        assert Endpoints.local("https://example.test").dealer_url == "wss://example.test/dealer"


class TestRegistry:

    def test_available(self):
        assert available_handlers() == ["spotify", "spotifyfree"]

    def test_create_returns_new_instances(self, store):
        first = create_handler("spotify", store)
        second = create_handler("spotify", store)
        assert isinstance(first, SpotifyHandler)
        assert first is not second
        assert first.lyrics_cache is not second.lyrics_cache

    def test_variants_use_separate_cache_namespaces(self, store):
        spotify = create_handler("spotify", store)
        free = create_handler("spotifyfree", store)
        assert isinstance(free, SpotifyFreeHandler)
        assert spotify.lyrics_cache.namespace != free.lyrics_cache.namespace

    def test_unknown(self, store):
        with pytest.raises(ConfigInvalid):
            create_handler("tidal", store)
