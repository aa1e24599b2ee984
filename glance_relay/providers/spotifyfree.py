"""
Delegated Spotify handler: the API token comes from an identity broker
instead of an OAuth refresh token.
"""

from typing import Any, Optional

import aiohttp

from ..auth import DelegatedAuth, TokenManager
from ..config import DelegatedConfig
from .spotify import SpotifyHandler


class SpotifyFreeHandler(SpotifyHandler):

    name = "spotifyfree"
    config_model = DelegatedConfig
    pin_device = True
    require_token_at_setup = True

    def _create_auth(self, session: aiohttp.ClientSession, config: Any) -> TokenManager:
        return DelegatedAuth(session, config.broker_token, config.broker_connection_id, self._endpoints)

    def _channel_auth(self) -> Optional[TokenManager]:
        # Broker tokens are accepted by the push channel too.
        return super()._channel_auth() or (self.auth if self.auth.access_token else None)
