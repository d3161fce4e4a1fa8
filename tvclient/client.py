"""
TradingView WebSocket client.

The ``Client`` supervises one WebSocket connection at a time:
- Auth handshake (``set_auth_token`` is the first frame of every connection)
- Exponential-backoff reconnection with a fast first retry and jitter
- Heartbeat echo and inbound-silence detection
- Connect timeout
- Rehydration of every live session after a reconnect
- Packet routing to the session that owns each packet

Sessions never see the supervisor itself; they get a ``ClientBridge``.
"""

import asyncio
import contextvars
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from websockets.exceptions import ConnectionClosed

from .auth import AuthCoordinator, FetchUser
from .backoff import ReconnectPolicy
from .config import ClientConfig
from .errors import (
    ConnectTimeout,
    HeartbeatTimeout,
    ProtocolDecodeError,
    ReconnectExhausted,
    RehydrateError,
    ServerProtocolError,
    SessionClosedError,
    TVClientError,
    TransportError,
)
from .events import EventEmitter, Listener
from .heartbeat import HeartbeatMonitor
from .protocol import decode, encode_command, encode_heartbeat
from .router import PacketRouter, RouterCallbacks
from .sessions import SessionRegistry
from .session import ChartSession, HistorySession, QuoteSession
from .transport import Connection, Connector, OutboundFrame, SendQueue, build_endpoint_url, open_websocket
from .types import ORIGIN, ClientEvent, CloseCode, ConnectionState, Packet, ProtocolError, Server


RehydrateHook = Callable[[], Union[None, Awaitable[None]]]
ShutdownHook = Callable[[BaseException], None]

# Hard limit for waiting on the transport close during end()
END_TIMEOUT = 5.0

# (client, batch) while a rehydrate hook runs; set only in the hook's own context
_rehydrate_batch: contextvars.ContextVar = contextvars.ContextVar("tvclient_rehydrate_batch", default=None)


@dataclass
class ClientBridge:
    """Narrow view of the client handed to sessions."""
    send: Callable[..., None]
    register_rehydrate_hook: Callable[..., None]
    unregister_rehydrate_hook: Callable[[str], None]
    register_shutdown_hook: Callable[[str, ShutdownHook], None]
    unregister_shutdown_hook: Callable[[str], None]
    sessions: SessionRegistry


@dataclass
class _Hook:
    fn: RehydrateHook
    session: Optional[str] = None


class Client:
    """
    Supervised TradingView WebSocket connection.

    Usage:
        async with Client(token=session, signature=signature) as client:
            quotes = client.quote_session()
            market = quotes.market("BINANCE:BTCUSDT")
            market.on_data(lambda data: print(data.get("lp")))
            ...

    Events (``client.on(name, callback)``): connected, disconnected,
    reconnecting, reconnected, connect_timeout, logged, ping, data, error,
    and the catch-all ``event`` which receives ``(name, *args)``.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        connector: Optional[Connector] = None,
        fetch_user: Optional[FetchUser] = None,
        logger: Optional[logging.Logger] = None,
        rng: Optional[Callable[[], float]] = None,
        clock: Optional[Callable[[], float]] = None,
        **options: Any
    ):
        """
        Initialize the client. Nothing touches the network until ``connect()``.

        Args:
            config: Complete configuration (built from ``options`` if None)
            connector: ``async (url, *, origin, compression) -> connection``
                (defaults to a ``websockets`` connection)
            fetch_user: Replaces the REST profile fetch used for auth
            logger: Logger to use instead of ``tvclient.client``
            rng: Random source for backoff jitter
            clock: Monotonic clock for the heartbeat monitor
            **options: Flat options, see ``ClientConfig.from_options``
        """
        self._logger = logger or logging.getLogger("tvclient.client")
        if config is not None and options:
            self._logger.warning(f"Ignoring options {sorted(options)} because a config was given")
        self.config = config or ClientConfig.from_options(**options)
        if self.config.debug:
            self._logger.setLevel(logging.DEBUG)

        self._connector = connector or open_websocket
        self._events = EventEmitter([e.value for e in ClientEvent], self._logger)

        # Owned exclusively by the supervisor
        self._queue = SendQueue()
        self._registry = SessionRegistry()
        self._rehydrate_hooks: Dict[str, _Hook] = {}
        self._shutdown_hooks: Dict[str, ShutdownHook] = {}

        self._router = PacketRouter(self._registry, RouterCallbacks(
            on_heartbeat=self._on_heartbeat,
            on_protocol_error=self._on_protocol_error,
            on_logged=self._on_greeting,
            on_data=self._on_data,
            is_logged=lambda: self._greeted,
        ))
        self._policy = ReconnectPolicy(self.config.reconnect, rng=rng)
        self._heartbeat = HeartbeatMonitor(
            config=self.config.heartbeat,
            on_timeout=self._on_heartbeat_timeout,
            now=clock,
        )
        self._auth = AuthCoordinator(
            token=self.config.token,
            signature=self.config.signature,
            location=self.config.location,
            max_attempts=self.config.auth_max_attempts,
            retry_delay_ms=self.config.auth_retry_delay_ms,
            fetch_user=fetch_user,
            on_error=self._events.emit_error,
        )

        self.bridge = ClientBridge(
            send=self.send,
            register_rehydrate_hook=self.register_rehydrate_hook,
            unregister_rehydrate_hook=self.unregister_rehydrate_hook,
            register_shutdown_hook=self._register_shutdown_hook,
            unregister_shutdown_hook=self._unregister_shutdown_hook,
            sessions=self._registry,
        )

        # Connection state
        self._state = ConnectionState.CONNECTING
        self._ws: Optional[Connection] = None
        self._generation = 0
        self._logged = False
        self._greeted = False
        self._manual_close = False
        self._started = False
        self._reconnecting = False
        self._attempts = 0

        # Tasks and timers
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Future] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._connect_timeout_handle: Optional[asyncio.TimerHandle] = None
        self._reset_handle: Optional[asyncio.TimerHandle] = None

        self._ready_event = asyncio.Event()
        self._closed_event = asyncio.Event()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def is_logged(self) -> bool:
        return self._logged

    @property
    def sessions(self) -> SessionRegistry:
        return self._registry

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def queued_frames(self) -> List[str]:
        """Encoded frames waiting to be written."""
        return self._queue.frames()

    # =========================================================================
    # Public API
    # =========================================================================

    def connect(self) -> None:
        """
        Start the eager auth fetch and open the transport.

        Returns immediately; use ``wait_ready()`` to wait for the handshake.

        Raises:
            TVClientError: If the client was already ended
        """
        if self._manual_close:
            raise TVClientError("Client has been ended", kind="closed")
        if self._started:
            return
        self._started = True
        self._closed_event.clear()
        self._auth.prepare()
        self._open()

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """
        Wait until the client is logged in and flushing.

        Raises:
            ConnectTimeout: If ``timeout`` seconds pass first
            TVClientError: If the client closes for good first
        """
        if self._state is ConnectionState.READY:
            return

        ready = asyncio.ensure_future(self._ready_event.wait())
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait({ready, closed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
            closed.cancel()

        if ready in done:
            return
        if closed in done:
            raise TVClientError("Client closed before it was ready", kind="closed")
        raise ConnectTimeout(f"Client not ready after {timeout}s")

    def send(
        self,
        msg_type: str,
        params: Optional[list] = None,
        *,
        session: Optional[str] = None,
        replayable: bool = False
    ) -> None:
        """
        Queue a command for transmission.

        Args:
            msg_type: Command name (e.g. 'quote_add_symbols')
            params: Positional parameters
            session: Owning session key (set by sessions)
            replayable: The owning session's rehydrate hook re-sends this
                command after a reconnect
        """
        frame = OutboundFrame(
            data=encode_command(msg_type, params),
            session=session,
            replayable=replayable,
        )
        # Frames sent by a running rehydrate hook go into its batch
        active = _rehydrate_batch.get()
        if active is not None and active[0] is self:
            active[1].append(frame)
            return
        self._queue.push(frame)
        self._schedule_flush()

    def register_rehydrate_hook(self, key: str, fn: RehydrateHook, session: Optional[str] = None) -> None:
        """
        Register a callback that restores server-side state after a reconnect.

        Hooks run sequentially in registration order. Registering an existing
        key replaces its callback and keeps its position.

        Args:
            key: Unique hook key
            fn: Callback, sync or async
            session: Session key whose replayable queued commands the hook
                re-sends (they are dropped from the queue before it runs)
        """
        if not key or not callable(fn):
            return
        self._rehydrate_hooks[key] = _Hook(fn=fn, session=session)

    def unregister_rehydrate_hook(self, key: str) -> None:
        self._rehydrate_hooks.pop(key, None)

    def on(self, event: Union[str, ClientEvent], listener: Listener) -> Listener:
        """Register a listener. Returns the listener for later ``off()``."""
        return self._events.on(event.value if isinstance(event, ClientEvent) else event, listener)

    def off(self, event: Union[str, ClientEvent], listener: Listener) -> bool:
        return self._events.off(event.value if isinstance(event, ClientEvent) else event, listener)

    def on_connected(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.CONNECTED, listener)

    def on_disconnected(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.DISCONNECTED, listener)

    def on_reconnecting(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.RECONNECTING, listener)

    def on_reconnected(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.RECONNECTED, listener)

    def on_logged(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.LOGGED, listener)

    def on_ping(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.PING, listener)

    def on_data(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.DATA, listener)

    def on_error(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.ERROR, listener)

    def on_event(self, listener: Listener) -> Listener:
        return self.on(ClientEvent.EVENT, listener)

    def quote_session(self, fields: Union[str, List[str]] = "all", custom_fields: Optional[List[str]] = None) -> QuoteSession:
        """Open a quote session on this client."""
        return QuoteSession(self.bridge, fields=fields, custom_fields=custom_fields)

    def chart_session(self) -> ChartSession:
        """Open a chart session on this client."""
        return ChartSession(self.bridge)

    def history_session(self) -> HistorySession:
        """Open a deep history session (use the ``history-data`` server)."""
        return HistorySession(self.bridge)

    async def end(self) -> None:
        """
        Close the connection for good.

        Cancels every timer and pending reconnect, rejects pending history
        requests, closes the transport (waiting at most 5 seconds for the
        close), then emits ``disconnected`` and silences all later events.
        """
        if self._manual_close:
            return
        self._manual_close = True

        self._cancel_reconnect()
        self._stop_connect_timeout()
        self._cancel_reset()
        self._heartbeat.stop()
        self._auth.cancel()

        closed = SessionClosedError("Client closed", kind="session_closed")
        for key, hook in list(self._shutdown_hooks.items()):
            try:
                hook(closed)
            except Exception as e:
                self._logger.error(f"Shutdown hook failed ({key}): {e}", exc_info=True)

        ws = self._ws
        reader = self._reader_task
        if ws is not None:
            await self._close_transport(ws, CloseCode.NORMAL, "client closed")
            if reader is not None and not reader.done() and reader is not asyncio.current_task():
                try:
                    await asyncio.wait_for(asyncio.shield(reader), timeout=END_TIMEOUT)
                except asyncio.TimeoutError:
                    self._logger.warning("Transport did not close in time, dropping it")
                    reader.cancel()

        for task in (self._connect_task, self._flush_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

        self._ws = None
        self._logged = False
        self._queue.clear()
        self._set_state(ConnectionState.CLOSED)
        self._logger.info("Client ended")

        self._events.emit(ClientEvent.DISCONNECTED.value)
        self._events.silence()

    async def __aenter__(self) -> "Client":
        self.connect()
        await self.wait_ready()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.end()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._logger.debug(f"State {self._state.value} -> {state.value}")
        self._state = state
        if state is ConnectionState.READY:
            self._ready_event.set()
        else:
            self._ready_event.clear()
        if state is ConnectionState.CLOSED:
            self._closed_event.set()

    def _open(self) -> None:
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        self._arm_connect_timeout(generation)
        self._connect_task = asyncio.create_task(self._connect(generation))

    async def _connect(self, generation: int) -> None:
        token = None
        try:
            if self.config.server == Server.HISTORY_DATA.value:
                # The token is part of the history-data URL
                token = await self._auth.token()
            url = build_endpoint_url(self.config.server, self.config.chart_id, token)
            self._logger.info(f"Connecting to {self.config.server} (generation {generation})")
            ws = await self._connector(url, origin=ORIGIN, compression=self.config.compression)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation != self._generation:
                return
            self._logger.warning(f"Connection failed: {e}")
            self._events.emit_error(TransportError(f"Connection failed: {e}"))
            self._handle_close(generation, None, str(e))
            return

        if generation != self._generation or self._manual_close:
            await self._close_transport(ws, CloseCode.NORMAL, "superseded")
            return

        self._ws = ws
        self._reader_task = asyncio.create_task(self._read_loop(generation, ws))
        await self._on_open(ws)

    async def _on_open(self, ws: Connection) -> None:
        self._stop_connect_timeout()
        self._set_state(ConnectionState.AWAITING_AUTH)

        was_reconnecting = self._reconnecting
        self._reconnecting = False
        self._greeted = False

        reset_after = self.config.reset_attempts_after_ms
        if reset_after > 0:
            loop = asyncio.get_running_loop()
            self._reset_handle = loop.call_later(reset_after / 1000, self._reset_attempts, self._generation)
        else:
            self._attempts = 0

        self._heartbeat.start()
        self._logger.info("WebSocket open, sending auth")

        token = await self._auth.token()
        if self._ws is not ws or self._manual_close:
            return

        if was_reconnecting and self.config.auto_rehydrate:
            await self._rehydrate()
            if self._ws is not ws or self._manual_close:
                return

        self._queue.prepend(OutboundFrame(
            data=encode_command("set_auth_token", [token]),
            control=True,
        ))
        self._logged = True
        self._set_state(ConnectionState.READY)

        if was_reconnecting:
            self._logger.info("Reconnected")
            self._events.emit(ClientEvent.RECONNECTED.value)
        self._events.emit(ClientEvent.CONNECTED.value)
        self._schedule_flush()

    async def _rehydrate(self) -> None:
        """
        Run every rehydrate hook in registration order.

        Frames a hook sends are collected into one batch that goes to the
        head of the queue. Caller sends made while a hook awaits are queued
        normally and so follow the batch. Just before a session's hook runs,
        that session's replayable queued frames are dropped because the hook
        re-sends them; ones queued after its hook ran are kept.
        """
        batch: List[OutboundFrame] = []
        for key, hook in list(self._rehydrate_hooks.items()):
            if hook.session:
                dropped = self._queue.discard(lambda f, s=hook.session: f.replayable and f.session == s)
                if dropped:
                    self._logger.debug(f"Dropped {dropped} queued frames of [{hook.session}] replaced by rehydration")

            token = _rehydrate_batch.set((self, batch))
            try:
                result = hook.fn()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._events.emit_error(RehydrateError(f"Rehydrate hook failed ({key}): {e}", hook=key))
            finally:
                _rehydrate_batch.reset(token)

        self._queue.prepend_many(batch)
        self._logger.info(f"Rehydrated {len(self._rehydrate_hooks)} sessions ({len(batch)} frames)")

    async def _read_loop(self, generation: int, ws: Connection) -> None:
        try:
            async for message in ws:
                if generation != self._generation:
                    break
                self._on_message(message)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            self._logger.debug(f"Connection closed: {e}")
        except Exception as e:
            self._logger.warning(f"Transport error: {e}")
            self._events.emit_error(TransportError(str(e)))

        self._handle_close(generation, getattr(ws, "close_code", None), getattr(ws, "close_reason", None))

    def _handle_close(self, generation: int, code: Optional[int], reason: Optional[str]) -> None:
        if generation != self._generation:
            return
        # Later callbacks from this connection are stale
        self._generation += 1

        self._ws = None
        self._logged = False
        self._greeted = False
        self._stop_connect_timeout()
        self._cancel_reset()
        self._heartbeat.stop()

        dropped = self._queue.discard(lambda f: f.control)
        if dropped:
            self._logger.debug(f"Discarded {dropped} control frames")

        self._logger.info(f"WebSocket closed code={code} reason={reason or ''}")

        if self._manual_close:
            self._set_state(ConnectionState.CLOSED)
            return

        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None or self._manual_close:
            return

        if self._policy.exhausted(self._attempts):
            self._logger.error(f"Giving up after {self._attempts} reconnection attempts")
            self._set_state(ConnectionState.CLOSED)
            self._events.emit_error(ReconnectExhausted(
                f"Reconnection failed after {self._attempts} attempts",
                attempts=self._attempts,
            ))
            self._events.emit(ClientEvent.DISCONNECTED.value)
            return

        delay = self._policy.delay_ms(self._attempts)
        self._attempts += 1
        was_reconnecting = self._reconnecting
        self._reconnecting = True
        self._set_state(ConnectionState.RECONNECTING)
        self._logger.info(f"Reconnecting in {delay}ms (attempt {self._attempts}/{self._policy.max_retries})")

        # Once per transition into reconnecting, not per attempt
        if not was_reconnecting:
            self._events.emit(ClientEvent.RECONNECTING.value, {
                "attempt": self._attempts,
                "max_retries": self._policy.max_retries,
            })

        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay / 1000, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._manual_close:
            return
        self._auth.prepare()
        self._open()

    def _reset_attempts(self, generation: int) -> None:
        self._reset_handle = None
        if generation == self._generation:
            self._attempts = 0

    async def _close_transport(self, ws: Connection, code: int, reason: str) -> None:
        try:
            await ws.close(code, reason)
        except Exception as e:
            self._logger.debug(f"Error closing transport: {e}")

    def _spawn_close(self, code: int, reason: str) -> None:
        ws = self._ws
        if ws is not None:
            asyncio.ensure_future(self._close_transport(ws, code, reason))

    # =========================================================================
    # Timers
    # =========================================================================

    def _arm_connect_timeout(self, generation: int) -> None:
        self._stop_connect_timeout()
        loop = asyncio.get_running_loop()
        self._connect_timeout_handle = loop.call_later(
            self.config.connect_timeout_ms / 1000,
            self._on_connect_timeout,
            generation,
        )

    def _stop_connect_timeout(self) -> None:
        if self._connect_timeout_handle is not None:
            self._connect_timeout_handle.cancel()
            self._connect_timeout_handle = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _on_connect_timeout(self, generation: int) -> None:
        self._connect_timeout_handle = None
        if generation != self._generation or self._state is not ConnectionState.CONNECTING:
            return

        timeout_ms = self.config.connect_timeout_ms
        self._logger.warning(f"No connection after {timeout_ms}ms, forcing reconnect")

        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()

        self._events.emit(ClientEvent.CONNECT_TIMEOUT.value, {"timeout_ms": timeout_ms})
        self._events.emit_error(ConnectTimeout(f"Connection timed out after {timeout_ms}ms", timeout_ms=timeout_ms))
        self._handle_close(generation, None, "connect timeout")

    def _on_heartbeat_timeout(self, idle_ms: float) -> None:
        self._events.emit_error(HeartbeatTimeout(f"No inbound activity for {idle_ms:.0f}ms", idle_ms=idle_ms))
        self._spawn_close(CloseCode.HEARTBEAT_TIMEOUT, "heartbeat timeout")

    # =========================================================================
    # Outbound
    # =========================================================================

    def _can_send(self) -> bool:
        return self._ws is not None and self._logged

    def _schedule_flush(self) -> None:
        if not self._can_send():
            return
        if self._flush_task is not None and not self._flush_task.done():
            return
        self._flush_task = asyncio.ensure_future(self._flush())

    async def _flush(self) -> None:
        try:
            await self._queue.flush(self._write, self._can_send)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The frame went back to the queue; the close path reconnects
            self._logger.warning(f"Send failed: {e}")

    async def _write(self, data: str) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError("Transport is not open")
        await ws.send(data)

    # =========================================================================
    # Inbound
    # =========================================================================

    def _on_message(self, message: Union[str, bytes]) -> None:
        self._heartbeat.record_activity()
        self._logger.debug(f"< {str(message)[:300]}")

        try:
            packets = decode(message, strict=self.config.strict_protocol, on_error=self._events.emit_error)
        except ProtocolDecodeError as e:
            # JSON failures already reached the error listeners
            if e.kind == "framing":
                self._events.emit_error(e)
            self._spawn_close(CloseCode.PROTOCOL_ERROR, "protocol decode error")
            return

        for packet in packets:
            self._router.route(packet)

    def _on_heartbeat(self, tick: int) -> None:
        self._queue.push(OutboundFrame(data=encode_heartbeat(tick), control=True))
        self._events.emit(ClientEvent.PING.value, tick)
        self._schedule_flush()

    def _on_protocol_error(self, packet: ProtocolError) -> None:
        self._logger.error(f"Server protocol error: {packet.payload}")
        self._events.emit_error(ServerProtocolError(f"Server protocol error: {packet.payload}", payload=packet.payload))
        self._spawn_close(CloseCode.NORMAL, "protocol error")

    def _on_greeting(self, packet: Packet) -> None:
        self._greeted = True
        self._events.emit(ClientEvent.LOGGED.value, packet.to_dict())

    def _on_data(self, packet: Packet) -> None:
        self._events.emit(ClientEvent.DATA.value, packet)

    # =========================================================================
    # Bridge internals
    # =========================================================================

    def _register_shutdown_hook(self, key: str, fn: ShutdownHook) -> None:
        self._shutdown_hooks[key] = fn

    def _unregister_shutdown_hook(self, key: str) -> None:
        self._shutdown_hooks.pop(key, None)
