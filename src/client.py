"""Pub/Sub client factory for gpubsub.

The client is created once in the run path and closed on exit, so it is
obvious when the gRPC channel is opened and when it ends.
"""

from __future__ import annotations

import logging
import os

from google.auth.exceptions import GoogleAuthError
from google.cloud import pubsub_v1


def build_subscriber(creds_path: str = "") -> pubsub_v1.SubscriberClient:
    """Create a subscriber client.

    A service account JSON file is used when given; otherwise the client
    falls back to application default credentials.
    """

    logger = logging.getLogger(__name__)
    try:
        if creds_path:
            # Fail fast on a missing file to avoid an ambiguous auth error later.
            if not os.path.isfile(creds_path):
                raise RuntimeError(f"Failed to read credentials: {creds_path} not found")
            logger.warning("Using credentials from file %s", creds_path)
            return pubsub_v1.SubscriberClient.from_service_account_file(creds_path)

        logger.debug("Setting up client")
        return pubsub_v1.SubscriberClient()
    except GoogleAuthError as exc:
        raise RuntimeError(f"Failed to create pub/sub client: {exc}") from exc
