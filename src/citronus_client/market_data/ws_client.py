# src/citronus_client/market_data/ws_client.py

import asyncio
import inspect
import json
import logging
import threading
from contextlib import suppress
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from citronus_client.config import WebSocketConfig
from citronus_client.connection.exceptions import AuthError, ErrorCategory, ErrorKind
from citronus_client.connection.jsonrpc import RpcError
from citronus_client.connection.signing import RequestSigner, encode_json
from citronus_client.execution.exceptions import MalformedOrderError
from citronus_client.logging_config import structured_log_extra

from .books import new_state
from .channels import FAMILIES, ChannelFamily, ChannelKey
from .exceptions import ReconnectExhaustedError, SubscriptionAuthError

logger = logging.getLogger(__name__)

CITRONUS_WS_URL = "wss://api.citronus.com/public/ws/v1/"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FATAL = "fatal"


class SubscriptionState(Enum):
    REQUESTED = "requested"
    ACTIVE = "active"
    TORN_DOWN = "torn_down"


@dataclass
class ChannelEvent:
    """A data frame delivered to channel handlers."""

    key: ChannelKey
    data: Any
    is_snapshot: bool
    state: Any = None
    subscription_id: Optional[str] = None
    frame: Dict[str, Any] = field(default_factory=dict, repr=False)


ChannelHandler = Callable[[ChannelEvent], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[Exception], Any]


@dataclass
class Subscription:
    key: ChannelKey
    handlers: List[ChannelHandler] = field(default_factory=list)
    error_handlers: List[ErrorHandler] = field(default_factory=list)
    state: SubscriptionState = SubscriptionState.REQUESTED
    subscription_id: Optional[str] = None
    awaiting_snapshot: bool = True
    book: Any = None


class SubscriptionManager:
    """
    Owns one WebSocket connection, the registry of desired subscriptions and
    the inbound dispatch loop.

    The registry is keyed by :class:`ChannelKey` and survives disconnects: on
    every (re)connect each registered channel is replayed as a fresh
    ``subscribe.*`` command, private ones re-signed with a new timestamp,
    and becomes active again once the server ACKs it. All registry changes run
    on the manager's event loop so they serialize with frame dispatch.
    """

    def __init__(
        self,
        url: str = CITRONUS_WS_URL,
        signer: Optional[RequestSigner] = None,
        config: Optional[WebSocketConfig] = None,
        connect_factory: Optional[Callable[[str], Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_error: Optional[ErrorHandler] = None,
    ):
        self._url = url
        self._signer = signer or RequestSigner(None, None)
        self.config = config or WebSocketConfig()
        self._connect = connect_factory or connect
        self._sleep = sleep or asyncio.sleep
        self._on_error = on_error

        self._subscriptions: Dict[ChannelKey, Subscription] = {}
        self._by_id: Dict[str, ChannelKey] = {}
        self._pending: List[ChannelKey] = []
        # Subscribe commands still awaiting an ACK for channels that were unsubscribed meanwhile.
        self._tombstones: Dict[ChannelKey, int] = {}
        self._registry_lock = asyncio.Lock()

        self._state = ConnectionState.DISCONNECTED
        self._websocket: Any = None
        self._pong_event: Optional[asyncio.Event] = None
        self._auth_failures = 0
        self._fatal_error: Optional[Exception] = None

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._main_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: Any, signer: Optional[RequestSigner] = None, **kwargs: Any) -> "SubscriptionManager":
        """Builds a manager from an :class:`~citronus_client.config.AppConfig`."""
        return cls(url=config.api.ws_url, signer=signer, config=config.websocket, **kwargs)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._websocket is not None

    @property
    def fatal_error(self) -> Optional[Exception]:
        return self._fatal_error

    def subscription(self, key: ChannelKey) -> Optional[Subscription]:
        return self._subscriptions.get(key)

    def active_channels(self) -> List[ChannelKey]:
        return [k for k, s in self._subscriptions.items() if s.state is SubscriptionState.ACTIVE]

    # Registry -----------------------------------------------------------

    def _register(
        self, key: ChannelKey, handler: ChannelHandler, on_error: Optional[ErrorHandler]
    ) -> tuple:
        if key.private and not self._signer.has_credentials:
            raise AuthError(
                f"Channel {key} is private and needs API credentials.",
                kind=ErrorKind.AUTH_REQUIRED,
            )
        sub = self._subscriptions.get(key)
        created = sub is None
        if created:
            sub = Subscription(key=key, book=new_state(key.family))
            self._subscriptions[key] = sub
        if handler not in sub.handlers:
            sub.handlers.append(handler)
        if on_error is not None and on_error not in sub.error_handlers:
            sub.error_handlers.append(on_error)
        return sub, created

    async def subscribe_async(
        self, key: ChannelKey, handler: ChannelHandler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        """
        Registers ``handler`` for ``key``. Subscribing to a channel that is
        already registered only adds a new handler; no command is re-sent.
        """
        async with self._registry_lock:
            sub, created = self._register(key, handler, on_error)
            if created and self.is_connected:
                await self._send_subscribe(sub)
            return sub

    async def unsubscribe_async(self, key: ChannelKey) -> bool:
        """Removes ``key`` from the registry. Safe to call for unknown or inactive channels."""
        async with self._registry_lock:
            sub = self._subscriptions.pop(key, None)
            if sub is None:
                return False
            if sub.subscription_id is not None:
                self._by_id.pop(sub.subscription_id, None)
            was_live = sub.state is SubscriptionState.ACTIVE
            sub.state = SubscriptionState.TORN_DOWN
            if self.is_connected:
                if was_live:
                    await self._send_unsubscribe(key, sub.subscription_id)
                elif key in self._pending:
                    # The server still opens it; tear it down once its ACK names the id.
                    self._tombstones[key] = self._pending.count(key)
            logger.info(
                "Unsubscribed from channel",
                extra=structured_log_extra(event="ws_unsubscribed", channel=str(key)),
            )
            return True

    def _run_on_loop(self, coro: Awaitable[Any]) -> Any:
        loop = self._loop
        if loop is not None and loop.is_running():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                return asyncio.run_coroutine_threadsafe(coro, loop).result(timeout=10)
        raise RuntimeError("Use the *_async methods from inside the event loop")

    def subscribe(
        self, key: ChannelKey, handler: ChannelHandler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        """Thread-safe :meth:`subscribe_async`; only registers when the manager is not running."""
        if self._loop is not None and self._loop.is_running():
            return self._run_on_loop(self.subscribe_async(key, handler, on_error))
        sub, _ = self._register(key, handler, on_error)
        return sub

    def unsubscribe(self, key: ChannelKey) -> bool:
        """Thread-safe :meth:`unsubscribe_async`."""
        if self._loop is not None and self._loop.is_running():
            return self._run_on_loop(self.unsubscribe_async(key))
        sub = self._subscriptions.pop(key, None)
        if sub is None:
            return False
        sub.state = SubscriptionState.TORN_DOWN
        return True

    def subscribe_wallets(self, handler: ChannelHandler, on_error: Optional[ErrorHandler] = None) -> Subscription:
        return self.subscribe(ChannelKey("wallets"), handler, on_error)

    def subscribe_orderbook(
        self, symbol: str, handler: ChannelHandler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        return self.subscribe(ChannelKey("orderbook", symbol=symbol), handler, on_error)

    def subscribe_klines(
        self, symbol: str, interval: str, handler: ChannelHandler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        return self.subscribe(ChannelKey("klines", symbol=symbol, interval=interval), handler, on_error)

    def subscribe_coins(
        self, handler: ChannelHandler, asset: Optional[str] = None, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        return self.subscribe(ChannelKey("coins", asset=asset), handler, on_error)

    # Outbound -----------------------------------------------------------

    def _command_frame(self, key: ChannelKey, command: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if key.private:
            return self._signer.ws_frame(command, params)
        return {"command": command, "params": params}

    async def _send(self, frame: Dict[str, Any]) -> None:
        if self._websocket is None:
            return
        await self._websocket.send(encode_json(frame).decode("utf-8"))

    async def _send_unsubscribe(self, key: ChannelKey, subscription_id: Optional[str]) -> None:
        params = dict(key.params())
        if subscription_id is not None:
            params["subscription_id"] = subscription_id
        await self._send(self._command_frame(key, key.channel.unsubscribe_command, params))

    async def _send_subscribe(self, sub: Subscription) -> None:
        sub.state = SubscriptionState.REQUESTED
        sub.subscription_id = None
        self._pending.append(sub.key)
        await self._send(self._command_frame(sub.key, sub.key.channel.command, sub.key.params()))
        logger.debug(
            "Subscribe command sent",
            extra=structured_log_extra(event="ws_subscribe_sent", channel=str(sub.key)),
        )

    async def _on_connected(self, websocket: Any) -> None:
        """Replays every registered channel on a fresh connection."""
        async with self._registry_lock:
            self._websocket = websocket
            self._state = ConnectionState.CONNECTED
            self._by_id.clear()
            self._pending.clear()
            self._tombstones.clear()
            self._pong_event = asyncio.Event()
            for key in list(self._subscriptions):
                sub = self._subscriptions.get(key)
                if sub is None:
                    continue
                sub.awaiting_snapshot = True
                await self._send_subscribe(sub)
        logger.info(
            "WebSocket connection established",
            extra=structured_log_extra(
                event="ws_connected", channels=len(self._subscriptions)
            ),
        )

    def _on_disconnected(self) -> None:
        self._websocket = None
        if self._state is not ConnectionState.FATAL:
            self._state = ConnectionState.DISCONNECTED
        self._by_id.clear()
        self._pending.clear()
        self._tombstones.clear()
        for sub in self._subscriptions.values():
            sub.state = SubscriptionState.REQUESTED
            sub.subscription_id = None

    # Inbound ------------------------------------------------------------

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        """Parses an incoming frame and routes it."""
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        try:
            data = json.loads(message, parse_float=Decimal)
        except ValueError:
            logger.warning(
                "Discarding non-JSON WebSocket frame",
                extra=structured_log_extra(event="ws_bad_frame"),
            )
            return
        if not isinstance(data, dict):
            logger.debug("Unhandled WebSocket frame: %r", data)
            return

        if data.get("error") is not None:
            await self._handle_error(data)
        elif self._is_pong(data):
            self._auth_failures = 0
            if self._pong_event is not None:
                self._pong_event.set()
        elif "method" in data and "data" in data:
            await self._dispatch(data)
        elif "subscription_id" in data and "response" in data:
            await self._handle_ack(data)
        else:
            logger.debug("Unhandled WebSocket frame: %r", data)

    @staticmethod
    def _is_pong(data: Dict[str, Any]) -> bool:
        for field_name in ("response", "command", "method"):
            value = data.get(field_name)
            if isinstance(value, str) and value.lower() == "pong":
                return True
        return False

    @staticmethod
    def _names(family: ChannelFamily, lowered: str) -> bool:
        return family.name in lowered or family.inbound_method in lowered

    def _pop_pending(self, text: str, private_only: bool = False) -> Optional[ChannelKey]:
        """
        Matches a server response to the pending command it answers. Pending
        keys of the family named in ``text`` win, ranked by how many of their
        params the text echoes; the oldest pending key is used only when the
        text names no channel at all.
        """
        lowered = text.lower()
        candidates = [k for k in self._pending if k.private or not private_only]
        named = [k for k in candidates if self._names(k.channel, lowered)]
        if named:
            key = max(
                named,
                key=lambda k: sum(1 for value in k.params().values() if value.lower() in lowered),
            )
        elif candidates and not any(self._names(f, lowered) for f in FAMILIES.values()):
            key = candidates[0]
        else:
            return None
        self._pending.remove(key)
        return key

    def _consume_tombstone(self, key: Optional[ChannelKey]) -> bool:
        count = self._tombstones.get(key, 0) if key is not None else 0
        if not count:
            return False
        if count == 1:
            del self._tombstones[key]
        else:
            self._tombstones[key] = count - 1
        return True

    async def _handle_ack(self, data: Dict[str, Any]) -> None:
        response = str(data.get("response") or "")
        lowered = response.lower()
        if "unsubscribed" in lowered:
            return
        if "subscribed" not in lowered:
            logger.debug("Unrecognized subscription response: %s", response)
            return

        key = self._pop_pending(response)
        if self._consume_tombstone(key):
            subscription_id = str(data["subscription_id"])
            await self._send_unsubscribe(key, subscription_id)
            logger.info(
                "Tore down channel unsubscribed before its ACK",
                extra=structured_log_extra(
                    event="ws_late_ack_teardown", channel=str(key), subscription_id=subscription_id
                ),
            )
            return
        sub = self._subscriptions.get(key) if key is not None else None
        if sub is None:
            logger.warning(
                "ACK for a channel that is no longer registered",
                extra=structured_log_extra(event="ws_orphan_ack", response=response),
            )
            return

        subscription_id = str(data["subscription_id"])
        sub.subscription_id = subscription_id
        sub.state = SubscriptionState.ACTIVE
        self._by_id[subscription_id] = sub.key
        if sub.key.private:
            self._auth_failures = 0
        logger.info(
            "Channel active",
            extra=structured_log_extra(
                event="ws_subscribed", channel=str(sub.key), subscription_id=subscription_id
            ),
        )

    async def _handle_error(self, data: Dict[str, Any]) -> None:
        error = RpcError.from_payload(data["error"])
        if error.kind.category is ErrorCategory.AUTHENTICATION:
            self._consume_tombstone(self._pop_pending(error.message, private_only=True))
            self._auth_failures += 1
            logger.error(
                "WebSocket authentication failed",
                extra=structured_log_extra(
                    event="ws_auth_failed",
                    error_kind=error.kind.value,
                    failures=self._auth_failures,
                ),
            )
            if self._auth_failures >= self.config.max_auth_failures:
                self._fatal_error = SubscriptionAuthError(self._auth_failures, error.message)
                self._state = ConnectionState.FATAL
            # A fresh signature needs a new connection attempt; never resend the same timestamp.
            if self._websocket is not None:
                await self._websocket.close()
            return

        key = self._pop_pending(error.message)
        self._consume_tombstone(key)
        logger.error(
            "WebSocket command rejected",
            extra=structured_log_extra(
                event="ws_command_error",
                channel=str(key) if key else None,
                error_kind=error.kind.value,
                message_text=error.message,
            ),
        )
        if self._on_error is not None:
            self._on_error(error.to_exception())

    def _is_snapshot(self, data: Dict[str, Any], sub: Subscription) -> bool:
        frame_type = data.get("type")
        if isinstance(frame_type, str):
            return frame_type.lower() == "snapshot"
        if isinstance(data.get("snapshot"), bool):
            return data["snapshot"]
        payload = data.get("data")
        if isinstance(payload, dict) and isinstance(payload.get("snapshot"), bool):
            return payload["snapshot"]
        return sub.key.channel.stateful and sub.awaiting_snapshot

    def _route(self, data: Dict[str, Any]) -> Optional[Subscription]:
        params = data.get("params")
        key = ChannelKey.from_frame(str(data.get("method")), params if isinstance(params, dict) else None)
        sub = self._subscriptions.get(key) if key is not None else None
        if sub is None and data.get("subscription_id") is not None:
            by_id = self._by_id.get(str(data["subscription_id"]))
            sub = self._subscriptions.get(by_id) if by_id is not None else None
        return sub

    async def _resync(self, sub: Subscription) -> None:
        """Re-subscribes an active stateful channel so the next snapshot rebuilds its state."""
        sub.awaiting_snapshot = True
        if not self.is_connected or sub.state is not SubscriptionState.ACTIVE:
            return
        if sub.subscription_id is not None:
            self._by_id.pop(sub.subscription_id, None)
        await self._send_unsubscribe(sub.key, sub.subscription_id)
        await self._send_subscribe(sub)

    async def _dispatch(self, data: Dict[str, Any]) -> None:
        sub = self._route(data)
        if sub is None:
            logger.debug(
                "Dropping frame for an unregistered channel",
                extra=structured_log_extra(event="ws_unrouted_frame", method=data.get("method")),
            )
            return

        is_snapshot = self._is_snapshot(data, sub)
        payload = data.get("data")
        if sub.book is not None:
            try:
                if is_snapshot:
                    sub.book.apply_snapshot(payload)
                else:
                    sub.book.apply_delta(payload)
            except (MalformedOrderError, TypeError, ValueError) as exc:
                logger.warning(
                    "Dropping malformed channel frame",
                    extra=structured_log_extra(
                        event="ws_bad_frame", channel=str(sub.key), error=str(exc)
                    ),
                )
                await self._resync(sub)
                return
        sub.awaiting_snapshot = False

        event = ChannelEvent(
            key=sub.key,
            data=payload,
            is_snapshot=is_snapshot,
            state=sub.book,
            subscription_id=sub.subscription_id,
            frame=data,
        )
        for handler in list(sub.handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Channel handler raised",
                    extra=structured_log_extra(event="ws_handler_error", channel=str(sub.key)),
                )

    # Connection loop ----------------------------------------------------

    async def _keepalive(self, websocket: Any) -> None:
        """Pings periodically; a missing pong marks the connection stale and closes it."""
        while True:
            await self._sleep(self.config.ping_interval_seconds)
            try:
                if self._signer.has_credentials:
                    self._pong_event.clear()
                    await self._send(self._signer.ws_frame("ping", {}))
                    await asyncio.wait_for(
                        self._pong_event.wait(), timeout=self.config.ping_timeout_seconds
                    )
                else:
                    pong_waiter = await websocket.ping()
                    await asyncio.wait_for(pong_waiter, timeout=self.config.ping_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "No pong within timeout; reconnecting",
                    extra=structured_log_extra(event="ws_stale"),
                )
                await websocket.close()
                return
            except ConnectionClosed:
                return

    async def _notify_error(self, exc: Exception) -> None:
        handlers: List[ErrorHandler] = []
        if self._on_error is not None:
            handlers.append(self._on_error)
        for sub in self._subscriptions.values():
            handlers.extend(sub.error_handlers)
        for handler in handlers:
            try:
                result = handler(exc)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("Error handler raised", extra=structured_log_extra(event="ws_error_handler"))

    async def run(self) -> None:
        """
        Connects and listens until :meth:`stop` is called. Reconnects with
        capped exponential backoff; raises :class:`SubscriptionAuthError` or
        :class:`ReconnectExhaustedError` when recovery is not possible.
        """
        self._running = True
        backoff_delay = self.config.reconnect_initial_seconds
        attempts = 0
        try:
            while self._running:
                self._state = ConnectionState.CONNECTING
                try:
                    async with self._connect(self._url) as ws:
                        attempts = 0
                        await self._on_connected(ws)
                        keepalive = asyncio.create_task(self._keepalive(ws))
                        try:
                            while self._running:
                                message = await ws.recv()
                                await self._handle_message(message)
                        except ConnectionClosed:
                            if self._running:
                                logger.warning(
                                    "WebSocket connection closed",
                                    extra=structured_log_extra(event="ws_closed"),
                                )
                        finally:
                            keepalive.cancel()
                            with suppress(asyncio.CancelledError):
                                await keepalive
                        if self._fatal_error is None:
                            backoff_delay = self.config.reconnect_initial_seconds
                except asyncio.CancelledError:
                    logger.debug("WebSocket listener cancelled; closing connection.")
                    raise
                except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                    if self._running:
                        logger.error(
                            "WebSocket client error",
                            extra=structured_log_extra(event="ws_error", error=str(e)),
                        )
                finally:
                    self._on_disconnected()

                if self._fatal_error is not None:
                    await self._notify_error(self._fatal_error)
                    raise self._fatal_error
                if not self._running:
                    break

                attempts += 1
                limit = self.config.max_reconnect_attempts
                if limit is not None and attempts > limit:
                    exhausted = ReconnectExhaustedError(attempts - 1)
                    await self._notify_error(exhausted)
                    raise exhausted

                logger.info(
                    "Reconnecting",
                    extra=structured_log_extra(
                        event="ws_reconnect", delay_seconds=backoff_delay, attempt=attempts
                    ),
                )
                await self._sleep(backoff_delay)
                backoff_delay = min(backoff_delay * 2, self.config.reconnect_max_seconds)
        finally:
            self._running = False
            if self._fatal_error is not None:
                self._state = ConnectionState.FATAL
            else:
                self._state = ConnectionState.DISCONNECTED
        logger.info("WebSocket run loop terminated.")

    # Thread helpers -----------------------------------------------------

    def start(self) -> None:
        """Runs :meth:`run` on a private event loop in a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("WebSocket client is already running.")
            return
        started = threading.Event()
        self._thread = threading.Thread(target=self._run_thread, args=(started,), daemon=True)
        self._thread.start()
        started.wait(timeout=5)
        logger.info("WebSocket client started.")

    def _run_thread(self, started: threading.Event) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            self._main_task = loop.create_task(self.run())
            loop.call_soon(started.set)
            loop.run_until_complete(self._main_task)
        except asyncio.CancelledError:
            logger.debug("WebSocket run loop cancelled during shutdown.")
        except (SubscriptionAuthError, ReconnectExhaustedError) as exc:
            logger.error(
                "WebSocket client stopped",
                extra=structured_log_extra(event="ws_fatal", error=str(exc)),
            )
        finally:
            loop.close()
            self._loop = None

    def stop(self) -> None:
        """Stops the WebSocket client."""
        self._running = False
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._request_shutdown)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=2)
        logger.info("WebSocket client stopped.")

    def _request_shutdown(self) -> None:
        if self._main_task is not None and not self._main_task.done():
            self._main_task.cancel()
