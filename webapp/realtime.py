"""
Real-time change feed for the status page.

Writes to services and incidents publish a small JSON event on a Redis
pub/sub channel. Readers hold a Subscription, which yields an initial
snapshot and then a freshly computed snapshot after every change until it
is closed.
"""

import os
import json
import logging
from datetime import datetime

import redis

logger = logging.getLogger(__name__)

SERVICES_CHANNEL = 'statuspage:services'
INCIDENTS_CHANNEL = 'statuspage:incidents'
ALL_CHANNELS = (SERVICES_CHANNEL, INCIDENTS_CHANNEL)

# Yielded by Subscription.snapshots() when a poll interval passes with no change
KEEPALIVE = object()

_redis_client = None


def get_redis():
    """Get the shared Redis client (connections are made lazily)"""
    global _redis_client
    if _redis_client is None:
        redis_url = os.getenv('REDIS_URL', 'redis://localhost:6379/1')
        _redis_client = redis.from_url(redis_url, socket_connect_timeout=2)
    return _redis_client


def publish_change(channel, action, entity_id=None, client=None):
    """
    Publish a change event for subscribers.

    The write that triggered the event has already been committed, so a
    Redis failure is logged and swallowed rather than reported as a failed
    write.

    Returns:
        int: number of subscribers that received the event (0 on failure)
    """
    event = {
        'action': action,
        'id': entity_id,
        'timestamp': datetime.now().isoformat()
    }
    client = client or get_redis()
    try:
        return client.publish(channel, json.dumps(event))
    except redis.exceptions.RedisError as e:
        logger.warning(f"Failed to publish {action} on {channel}: {e}")
        return 0


def decode_event(message):
    """Decode the data of a pub/sub message into an event dict"""
    data = message.get('data')
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    try:
        return json.loads(data)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed change event on {message.get('channel')!r}")
        return None


class Subscription:
    """
    Cancellable subscription to one or more change channels.

    Usage:
        with Subscription(ALL_CHANNELS, build_snapshot) as subscription:
            for snapshot in subscription.snapshots():
                ...

    The channels are subscribed before the initial snapshot is taken so a
    change made in between is never missed. Leaving the ``with`` block (or
    calling close()) unsubscribes and ends iteration. Calling open() again
    restarts delivery with a new initial snapshot.
    """

    def __init__(self, channels, snapshot, client=None, poll_timeout=None):
        if isinstance(channels, str):
            channels = (channels,)
        self.channels = tuple(channels)
        self.snapshot = snapshot
        self.client = client
        if poll_timeout is None:
            poll_timeout = float(os.getenv('STREAM_POLL_SECONDS', '15'))
        self.poll_timeout = poll_timeout
        self.closed = True
        self._pubsub = None

    def open(self):
        """Register interest in the channels"""
        client = self.client or get_redis()
        self._pubsub = client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(*self.channels)
        self.closed = False
        logger.debug(f"Subscribed to {', '.join(self.channels)}")
        return self

    def close(self):
        """Stop delivery and release the pub/sub connection"""
        if self._pubsub is None:
            self.closed = True
            return
        try:
            self._pubsub.unsubscribe()
            self._pubsub.close()
        except redis.exceptions.RedisError as e:
            logger.warning(f"Error closing subscription: {e}")
        finally:
            self._pubsub = None
            self.closed = True
            logger.debug(f"Unsubscribed from {', '.join(self.channels)}")

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def events(self):
        """
        Yield raw change events as they arrive.

        Yields KEEPALIVE whenever poll_timeout elapses without a change.
        """
        while not self.closed:
            message = self._pubsub.get_message(timeout=self.poll_timeout)
            if self.closed:
                return
            if message is None:
                yield KEEPALIVE
                continue
            if message.get('type') != 'message':
                continue
            event = decode_event(message)
            if event is not None:
                yield event

    def snapshots(self):
        """
        Yield the current snapshot, then a new one after every change.

        Yields KEEPALIVE on idle poll intervals.
        """
        if self.closed:
            raise RuntimeError('Subscription is not open')

        yield self.snapshot()
        for event in self.events():
            if event is KEEPALIVE:
                yield KEEPALIVE
            else:
                yield self.snapshot()
