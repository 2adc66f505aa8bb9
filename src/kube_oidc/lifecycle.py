"""Token lifecycle: load provider config, exchange, cache the result."""

from __future__ import annotations

import logging

from kube_oidc.exceptions import ExchangeError, KubeOidcError, PersistError
from kube_oidc.models import ID_TOKEN_KEY, REFRESH_TOKEN_KEY, Token
from kube_oidc.oidc import ExchangerFactory, default_exchanger_factory
from kube_oidc.store import ConfigStore

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Produces a valid identity token for a kubeconfig user.

    Each call to `get_token` loads the user's provider config, hands it to
    a token exchanger (which decides between the cached token, a refresh
    and a new login) and writes the resulting tokens back to the store.
    """

    def __init__(
        self,
        store: ConfigStore,
        exchanger_factory: ExchangerFactory | None = None,
    ) -> None:
        self.store = store
        self.exchanger_factory = exchanger_factory or default_exchanger_factory()

    def get_token(self, user: str) -> Token:
        """Get a usable token for `user` and cache it in the kubeconfig.

        Raises:
            StoreIOError, StoreParseError: The kubeconfig could not be loaded.
            ExchangeError: No token could be obtained.
            MalformedTokenResponseError: The token has no identity token.
                Nothing is written in that case.
            PersistError: A token was obtained but could not be cached. The
                token is available as `error.token`.
        """
        config = self.store.get_oidc_provider_config(user)
        exchanger = self.exchanger_factory(config)

        try:
            token = exchanger.get_token()
        except KubeOidcError:
            raise
        except Exception as e:
            raise ExchangeError("OIDC exchange failed", str(e)) from e

        updates = {ID_TOKEN_KEY: token.identity_token}
        # An empty refresh token never replaces a stored one
        if token.refresh_token:
            updates[REFRESH_TOKEN_KEY] = token.refresh_token

        try:
            self.store.update_provider_config(user, updates)
        except KubeOidcError as e:
            raise PersistError(token, e) from e

        logger.debug(f"Cached tokens for '{user}': {sorted(updates)}")
        return token
