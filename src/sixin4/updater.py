"""Client for the tunnel provider's endpoint-update API."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import Credentials

LOG = logging.getLogger(__name__)


class EndpointUpdater:
    """Tell the provider which IPv4 address our end of the tunnel lives on.

    The provider infers the address from the source of the HTTPS connection,
    so the request only names the tunnel. The outcome is the HTTP status; the
    body is logged for debugging and otherwise ignored.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._timeout = timeout
        self._session = session or requests.Session()

    def update(self, credentials: Credentials) -> bool:
        LOG.info(
            "requesting endpoint update for tunnel %s at %s",
            credentials.tunnel_id,
            credentials.update_url,
        )
        try:
            response = self._session.get(
                credentials.update_url,
                params={"hostname": credentials.tunnel_id},
                auth=(credentials.username, credentials.password),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            LOG.error(
                "endpoint update for tunnel %s failed: %s", credentials.tunnel_id, exc
            )
            return False

        LOG.debug(
            "endpoint update response (%s): %s",
            response.status_code,
            response.text.strip(),
        )
        # only a final 2xx counts as accepted
        if not 200 <= response.status_code < 300:
            LOG.error(
                "endpoint update for tunnel %s rejected with HTTP %s",
                credentials.tunnel_id,
                response.status_code,
            )
            return False

        LOG.info("endpoint update for tunnel %s accepted", credentials.tunnel_id)
        return True
