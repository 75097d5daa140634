# app/infrastructure/message_broker.py

import asyncio
import json
import uuid
from typing import Any, Dict, Optional
from redis.asyncio import Redis
from config.settings import settings
import logging

logger = logging.getLogger(__name__)


_CLOSED = object()


class Subscription:
    """
    One subscriber's view of a conversation channel.

    Owns a bounded queue so a slow consumer never blocks the publisher.
    Iterate with `async for payload in subscription`; iteration ends once
    the subscription is closed.
    """

    def __init__(self, conversation_id: int, maxsize: int):
        self.subscription_id = uuid.uuid4().hex
        self.conversation_id = conversation_id
        self.closed = False
        self.dropped = False  # True if closed because the queue overflowed
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)  # +1 keeps room for the close marker
        self._maxsize = maxsize

    def offer(self, payload: Dict[str, Any]) -> bool:
        """Queue a payload without waiting. Overflow closes this subscription only."""
        if self.closed:
            return False
        if self._queue.qsize() >= self._maxsize:
            logger.warning(f"Subscriber {self.subscription_id} on conversation {self.conversation_id} fell behind, dropping it")
            self.close(dropped=True)
            return False
        self._queue.put_nowait(payload)
        return True

    def close(self, dropped: bool = False):
        if self.closed:
            return
        self.closed = True
        self.dropped = dropped
        # Pending payloads are discarded, delivery is at-most-once
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Number of payloads waiting to be consumed"""
        return 0 if self.closed else self._queue.qsize()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


class ConversationBroker:
    """
    Publish/subscribe fan-out keyed by conversation id.

    Every subscriber of a conversation receives each published payload
    once, in publish order. Nothing is acknowledged or redelivered.
    """

    def __init__(self, queue_size: Optional[int] = None):
        self.queue_size = queue_size or settings.SUBSCRIBER_QUEUE_SIZE
        # Maps conversation_id to {subscription_id: Subscription}
        self._subscribers: Dict[int, Dict[str, Subscription]] = {}
        self._bridge: Optional["RedisBridge"] = None
        # Held by writers from insert through publish so ids reach subscribers in order
        self._ordering_locks: Dict[int, asyncio.Lock] = {}

    def subscribe(self, conversation_id: int) -> Subscription:
        subscription = Subscription(conversation_id, self.queue_size)
        self._subscribers.setdefault(conversation_id, {})[subscription.subscription_id] = subscription
        logger.debug(f"Subscription {subscription.subscription_id} opened on conversation {conversation_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        """Close and forget a subscription. Safe to call more than once."""
        subscription.close()
        channel = self._subscribers.get(subscription.conversation_id)
        if channel is None:
            return
        channel.pop(subscription.subscription_id, None)
        if not channel:
            del self._subscribers[subscription.conversation_id]

    def subscriber_count(self, conversation_id: int) -> int:
        return len(self._subscribers.get(conversation_id, {}))

    def ordering_lock(self, conversation_id: int) -> asyncio.Lock:
        """Per-conversation lock serializing store-then-publish in this process"""
        return self._ordering_locks.setdefault(conversation_id, asyncio.Lock())

    def dispatch(self, conversation_id: int, payload: Dict[str, Any]) -> int:
        """
        Deliver a payload to this process's subscribers

        Returns:
            Number of subscribers the payload was queued for
        """
        channel = self._subscribers.get(conversation_id)
        if not channel:
            return 0

        delivered = 0
        for subscription in list(channel.values()):
            if subscription.offer(payload):
                delivered += 1
            else:
                self.unsubscribe(subscription)
        return delivered

    async def publish(self, conversation_id: int, payload: Dict[str, Any]) -> None:
        """
        Publish a payload on a conversation channel

        With a Redis bridge attached the payload goes through Redis so every
        process sees it; otherwise it is dispatched locally right away.
        """
        if self._bridge is not None:
            try:
                await self._bridge.publish(conversation_id, payload)
                return
            except Exception as e:
                logger.error(f"Redis publish failed for conversation {conversation_id}, delivering locally: {e}")
        self.dispatch(conversation_id, payload)

    def attach_bridge(self, bridge: Optional["RedisBridge"]):
        self._bridge = bridge

    def close_all(self):
        for channel in list(self._subscribers.values()):
            for subscription in list(channel.values()):
                self.unsubscribe(subscription)


class RedisBridge:
    """
    Relays conversation channels through Redis pub/sub so several API
    processes share them. Publishes go to `conversation:<id>`; the listener
    hands every received payload to the local broker.
    """

    CHANNEL_PREFIX = "conversation:"

    def __init__(self, redis: Redis, broker: ConversationBroker):
        self.redis = redis
        self.broker = broker
        self.is_running = False
        self.pubsub = None

    @staticmethod
    def channel_name(conversation_id: int) -> str:
        return f"{RedisBridge.CHANNEL_PREFIX}{conversation_id}"

    @staticmethod
    def parse_channel(channel) -> Optional[int]:
        if isinstance(channel, bytes):
            channel = channel.decode()
        if not channel.startswith(RedisBridge.CHANNEL_PREFIX):
            return None
        try:
            return int(channel[len(RedisBridge.CHANNEL_PREFIX):])
        except ValueError:
            return None

    async def publish(self, conversation_id: int, payload: Dict[str, Any]):
        await self.redis.publish(self.channel_name(conversation_id), json.dumps(payload))

    async def start(self):
        """Listen for conversation payloads until stopped"""
        if self.is_running:
            logger.warning("RedisBridge is already running")
            return

        self.is_running = True
        logger.info("RedisBridge started - relaying conversation channels")

        try:
            self.pubsub = self.redis.pubsub()
            await self.pubsub.psubscribe(f"{self.CHANNEL_PREFIX}*")

            async for message in self.pubsub.listen():
                if not self.is_running:
                    break
                try:
                    if message and message["type"] == "pmessage":
                        self.handle_message(message["channel"], message["data"])
                except Exception as e:
                    logger.error(f"Error relaying conversation message: {e}", exc_info=True)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in RedisBridge: {e}", exc_info=True)
        finally:
            self.is_running = False
            if self.pubsub:
                await self.pubsub.punsubscribe()
                await self.pubsub.aclose()
                self.pubsub = None

    def handle_message(self, channel, data) -> int:
        conversation_id = self.parse_channel(channel)
        if conversation_id is None:
            return 0
        if isinstance(data, bytes):
            data = data.decode()
        return self.broker.dispatch(conversation_id, json.loads(data))

    def stop(self):
        self.is_running = False
        logger.info("RedisBridge stopped")


# Shared instance
conversation_broker = ConversationBroker()
