"""Realtime subscriber: delivers remote collection snapshots.

Each remote change delivers the whole collection. Before handing it on, the
subscriber parses temporal fields back into datetimes and drops every record
this device wrote itself (``originDevice`` equal to the local device id), so
local writes never come back as remote updates.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .records import ORIGIN_DEVICE, deserialize_record, snapshot_records
from .remote import Listener, RemoteStore
from .validation import validate_collection_name

logger = logging.getLogger(__name__)

__all__ = ["RealtimeSubscriber", "RESUBSCRIBE_IGNORE", "RESUBSCRIBE_REPLACE"]

RecordsCallback = Callable[[List[Dict[str, Any]]], None]

RESUBSCRIBE_REPLACE = "replace"
RESUBSCRIBE_IGNORE = "ignore"


class _Subscription:
    def __init__(self, collection: str, on_update: RecordsCallback) -> None:
        self.collection = collection
        self.on_update = on_update
        self.active = True
        self.listener: Optional[Listener] = None


class RealtimeSubscriber:
    """Keeps at most one remote listener per collection."""

    def __init__(
        self,
        remote: RemoteStore,
        device_id: str,
        resubscribe: str = RESUBSCRIBE_REPLACE,
    ) -> None:
        """Initialize the subscriber.

        Args:
            remote: Remote store to listen on
            device_id: Local device id used for echo suppression
            resubscribe: What subscribe() does for an already subscribed
                collection: "replace" the old callback or "ignore" the call
        """
        if resubscribe not in (RESUBSCRIBE_REPLACE, RESUBSCRIBE_IGNORE):
            raise ValueError(f"Unknown resubscribe mode: {resubscribe!r}")
        self.remote = remote
        self.device_id = device_id
        self.resubscribe = resubscribe
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, _Subscription] = {}

    def subscribe(self, collection: str, on_update: RecordsCallback) -> bool:
        """Start delivering snapshots of a collection to a callback.

        Args:
            collection: Collection to listen on
            on_update: Called with the filtered record list on every change

        Returns:
            True if a subscription was started, False if an existing one was
            kept (``resubscribe="ignore"``)
        """
        validate_collection_name(collection)
        stale: Optional[Listener] = None
        with self._lock:
            existing = self._subscriptions.get(collection)
            if existing is not None:
                if self.resubscribe == RESUBSCRIBE_IGNORE:
                    logger.debug(f"Already subscribed to {collection}, ignoring")
                    return False
                stale = self._cancel(existing)

            subscription = _Subscription(collection, on_update)
            self._subscriptions[collection] = subscription
        if stale is not None:
            stale.close()

        # Listening may deliver synchronously, so no lock is held here
        listener = self.remote.listen(
            collection,
            lambda snapshot: self._handle_snapshot(subscription, snapshot),
            lambda error: logger.error(f"Realtime listener error for {collection}: {error}"),
        )
        with self._lock:
            if subscription.active:
                subscription.listener = listener
                logger.info(f"Realtime listener set up for {collection}")
                return True
        # Unsubscribed while the listener was being registered
        listener.close()
        return True

    def unsubscribe(self, collection: str) -> bool:
        """Cancel the subscription of a collection.

        No callback for it runs after this returns.

        Returns:
            True if there was a subscription to cancel
        """
        with self._lock:
            subscription = self._subscriptions.get(collection)
            if subscription is None:
                return False
            listener = self._cancel(subscription)
        if listener is not None:
            listener.close()
        logger.info(f"Listener removed for {collection}")
        return True

    def unsubscribe_all(self) -> int:
        """Cancel every subscription and return how many were cancelled."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            listeners = [self._cancel(s) for s in subscriptions]
        for listener in listeners:
            if listener is not None:
                listener.close()
        if subscriptions:
            logger.info("All listeners removed")
        return len(subscriptions)

    def subscribed_collections(self) -> List[str]:
        """Collections with an active subscription."""
        with self._lock:
            return sorted(self._subscriptions)

    def _cancel(self, subscription: _Subscription) -> Optional[Listener]:
        """Deactivate a subscription; the caller closes the returned listener."""
        subscription.active = False
        if self._subscriptions.get(subscription.collection) is subscription:
            del self._subscriptions[subscription.collection]
        listener = subscription.listener
        subscription.listener = None
        return listener

    def filter_snapshot(self, snapshot: Any) -> List[Dict[str, Any]]:
        """Deserialize a collection snapshot and drop our own records."""
        records = []
        for raw in snapshot_records(snapshot):
            if raw.get(ORIGIN_DEVICE) == self.device_id:
                continue
            records.append(deserialize_record(raw))
        return records

    def _handle_snapshot(self, subscription: _Subscription, snapshot: Any) -> None:
        if not subscription.active:
            return
        try:
            records = self.filter_snapshot(snapshot)
        except Exception as e:
            logger.error(
                f"Error processing realtime update for {subscription.collection}: {e}"
            )
            return
        # Delivering under the lock means an unsubscribe either happens
        # before this check or waits for the callback to finish
        with self._lock:
            if subscription.active:
                subscription.on_update(records)
