"""Observer registry for connection, pairing, inbound and alert events."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from safesend.core.models import ConnectionState, InboundMessage

LOGGER = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class EventHub:
    """Fan-out of service events to any number of subscribers.

    Observers are plain callables. A failing observer is logged and never
    prevents the remaining observers from being called.
    """

    CONNECTION_STATE = "connection_state"
    PAIRING_PAYLOAD = "pairing_payload"
    MESSAGE = "message"
    SECURITY_ALERT = "security_alert"

    def __init__(self) -> None:
        self._observers: Dict[str, List[Callable[[Any], None]]] = {
            self.CONNECTION_STATE: [],
            self.PAIRING_PAYLOAD: [],
            self.MESSAGE: [],
            self.SECURITY_ALERT: [],
        }

    def _subscribe(self, topic: str, callback: Callable[[Any], None]) -> Unsubscribe:
        observers = self._observers[topic]
        observers.append(callback)

        def unsubscribe() -> None:
            if callback in observers:
                observers.remove(callback)

        return unsubscribe

    def on_connection_state(self, callback: Callable[[ConnectionState], None]) -> Unsubscribe:
        return self._subscribe(self.CONNECTION_STATE, callback)

    def on_pairing_payload(self, callback: Callable[[str | None], None]) -> Unsubscribe:
        return self._subscribe(self.PAIRING_PAYLOAD, callback)

    def on_message(self, callback: Callable[[InboundMessage], None]) -> Unsubscribe:
        return self._subscribe(self.MESSAGE, callback)

    def on_security_alert(self, callback: Callable[[str], None]) -> Unsubscribe:
        return self._subscribe(self.SECURITY_ALERT, callback)

    def emit(self, topic: str, value: Any) -> None:
        # Copy so observers may unsubscribe while being notified.
        for callback in list(self._observers[topic]):
            try:
                callback(value)
            except Exception:
                LOGGER.exception("Observer for %s failed", topic)

    def connection_state(self, state: ConnectionState) -> None:
        self.emit(self.CONNECTION_STATE, state)

    def pairing_payload(self, payload: str | None) -> None:
        self.emit(self.PAIRING_PAYLOAD, payload)

    def message(self, message: InboundMessage) -> None:
        self.emit(self.MESSAGE, message)

    def security_alert(self, alert: str) -> None:
        LOGGER.warning("Security alert: %s", alert)
        self.emit(self.SECURITY_ALERT, alert)
