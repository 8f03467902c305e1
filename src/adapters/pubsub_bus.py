"""Google Cloud Pub/Sub bus adapter.

Implements the core BusPort on top of the streaming pull subscriber.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from google.api_core import exceptions
from google.cloud import pubsub_v1

from core.models import Message
from core.ports import BusError, Delivery

LOGGER = logging.getLogger(__name__)

STOP_POLL_SECONDS = 1.0


class PubSubDelivery:
    """Wraps a received Pub/Sub message for the runners."""

    def __init__(self, received: pubsub_v1.subscriber.message.Message) -> None:
        self._received = received
        self.message = Message(
            id=received.message_id,
            data=received.data,
            attributes=dict(received.attributes),
            publish_time=received.publish_time,
        )

    def ack(self) -> None:
        self._received.ack()

    def nack(self) -> None:
        self._received.nack()


class PubSubBus:
    """Thin SubscriberClient wrapper that satisfies the BusPort contract."""

    def __init__(self, client: pubsub_v1.SubscriberClient, project: str) -> None:
        self._client = client
        self._project = project

    def _path(self, subscription: str) -> str:
        return self._client.subscription_path(self._project, subscription)

    def _get(self, subscription: str):
        return self._client.get_subscription(request={"subscription": self._path(subscription)})

    def exists(self, subscription: str) -> bool:
        try:
            self._get(subscription)
        except exceptions.NotFound:
            return False
        except exceptions.GoogleAPICallError as exc:
            raise BusError(f"Failed to check subscription {subscription}: {exc}") from exc
        return True

    def topic(self, subscription: str) -> str:
        """Return the topic id (last path segment) the subscription reads from."""

        try:
            config = self._get(subscription)
        except exceptions.GoogleAPICallError as exc:
            raise BusError(f"Failed to get subscription {subscription} config: {exc}") from exc
        return config.topic.rsplit("/", 1)[-1]

    def receive(
        self,
        subscription: str,
        handler: Callable[[Delivery], None],
        stop: threading.Event,
    ) -> None:
        def callback(received) -> None:
            handler(PubSubDelivery(received))

        future = self._client.subscribe(
            self._path(subscription),
            callback=callback,
            await_callbacks_on_shutdown=True,
        )
        while not stop.is_set() and not future.done():
            stop.wait(STOP_POLL_SECONDS)
        future.cancel()
        # Waits for in-flight callbacks; re-raises a stream failure if any.
        future.result()

    def close(self) -> None:
        self._client.close()
