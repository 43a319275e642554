"""Fan out descriptions of committed mutations to other stores.

A channel is joined by name.  Every store that opens a channel with the
same name sees the events published by the others, never its own.

Receiving is observation only: the default handler logs the event and
nothing applies it to the receiving store.  A store sharing the same
storage sees the change on its next read; a store on separate storage
does not see it at all.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Callable, Literal, Optional

import psycopg2
from pydantic import BaseModel

from patientregistry import util
from patientregistry.json import JsonEncoder

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "patient-registration-app"


class ChangeEvent(BaseModel):
    type: Literal["insert", "update", "delete"]
    table: Literal["patients", "allergies", "saved_queries"]
    data: Optional[dict] = None
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


Handler = Callable[[ChangeEvent], None]


class BroadcastChannel(ABC):
    def __init__(self, name: str = DEFAULT_CHANNEL):
        self.name = name
        # identifies this end of the channel, so we skip our own messages
        self.id = util.uuid4_string()
        self.closed = False
        self._handlers: list[Handler] = [self._log_event]

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def on_receive(self, handler: Handler) -> Handler:
        """Register handler for every event published by another context."""
        self._handlers.append(handler)
        return handler

    def publish(self, event: ChangeEvent) -> None:
        """Send event to the other contexts.  Fire and forget."""
        if self.closed:
            logger.warning(f"{self.name}: publish on closed channel, dropping {event}")
            return
        logger.debug(f"{self.name}/{self.id}: broadcasting {event}")
        self._send(event)

    def close(self) -> None:
        self.closed = True

    @abstractmethod
    def _send(self, event: ChangeEvent) -> None:
        pass

    def _dispatch(self, event: ChangeEvent, sender: str) -> None:
        if sender == self.id or self.closed:
            return
        for handler in list(self._handlers):
            try:
                handler(event)
            # a broken handler must not keep the others from seeing the event
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"{self.name}: handler {handler} failed on {event}")

    def _log_event(self, event: ChangeEvent) -> None:
        logger.info(
            f"{self.name}/{self.id}: received {event.type} on {event.table}"
            f" from another context: {event.to_dict()}"
        )


class MemoryBroadcastChannel(BroadcastChannel):
    """Channel between stores in one process.

    Delivery is synchronous, in the order receivers joined.  A channel
    opened after an event was published never sees it.
    """

    _open_channels: dict[str, list["MemoryBroadcastChannel"]] = {}

    def __init__(self, name: str = DEFAULT_CHANNEL):
        super().__init__(name)
        self._open_channels.setdefault(name, []).append(self)

    def _send(self, event: ChangeEvent) -> None:
        for channel in list(self._open_channels.get(self.name, [])):
            if channel is not self:
                # each receiver gets its own copy, like a structured clone
                channel._dispatch(event.model_copy(deep=True), self.id)

    def close(self) -> None:
        super().close()
        peers = self._open_channels.get(self.name, [])
        if self in peers:
            peers.remove(self)
        if not peers:
            self._open_channels.pop(self.name, None)


class PostgresBroadcastChannel(BroadcastChannel):
    """Channel between processes, over Postgres NOTIFY/LISTEN.

    Give it a dedicated connection: it is switched to autocommit, which
    LISTEN needs to get notifications as they arrive.  Call poll() to
    receive.
    """

    def __init__(self, conn, name: str = DEFAULT_CHANNEL):
        super().__init__(name)
        self.conn = conn
        self.conn.autocommit = True
        with self.conn.cursor() as cursor:
            cursor.execute(f'LISTEN "{self.name}"')

    def _send(self, event: ChangeEvent) -> None:
        payload = JsonEncoder().encode({"sender": self.id, "event": event.to_dict()})
        try:
            with self.conn.cursor() as cursor:
                cursor.execute("SELECT pg_notify(%s, %s)", (self.name, payload))
        except psycopg2.Error as err:
            # best effort: the write already committed, receivers just miss it
            logger.error(f"{self.name}: could not broadcast {event}: {err}")

    def poll(self) -> int:
        """Dispatch pending notifications.  Return how many were received."""
        self.conn.poll()
        received = 0
        while self.conn.notifies:
            notify = self.conn.notifies.pop(0)
            try:
                payload = json.loads(notify.payload)
                event = ChangeEvent.model_validate(payload["event"])
            except (ValueError, KeyError) as err:
                logger.warning(f"{self.name}: ignoring malformed message: {err}")
                continue
            if payload.get("sender") == self.id:
                continue
            received += 1
            self._dispatch(event, payload.get("sender"))
        return received

    def close(self) -> None:
        if not self.closed:
            try:
                with self.conn.cursor() as cursor:
                    cursor.execute(f'UNLISTEN "{self.name}"')
            except psycopg2.Error as err:
                logger.warning(f"{self.name}: UNLISTEN failed: {err}")
        super().close()
