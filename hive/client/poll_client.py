"""
Adaptive poll client.

One instance runs per participating application:

    Disconnected -> Registering -> Polling <-> Backoff -> Error (terminal)

Each cycle fetches pending updates for the client's audience, applies
them through the host adapter, acknowledges them and picks the next
delay:
- updates received: reset to ``min_interval``
- nothing received: multiply by ``backoff_factor`` up to ``max_interval``
- transport failure: jump to ``max_interval``; after ``failure_threshold``
  consecutive failures, try ``max_reconnect_attempts`` re-registrations
  and then give up

Usage:
    client = PollClient.connect("http://localhost:3000/api/v1", host, "target")
    client.start()
    ...
    client.stop()
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from hive.client.context import ClientContext, ClientState
from hive.client.host import HostAdapter
from hive.client.transport import RelayClient
from hive.config import PollSettings
from hive.errors import HiveError, TransientIOError

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class PollClient:

    def __init__(
        self,
        transport: RelayClient,
        host: HostAdapter,
        context: ClientContext,
        settings: PollSettings = None
    ):
        self.transport = transport
        self.host = host
        self.context = context
        self.settings = settings or PollSettings()
        self.context.poll_interval = self.settings.min_interval

        # Polling, applying and sending never overlap within one client
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._handlers: dict[str, Callable[[dict], None]] = {
            "selection": self._apply_selection,
            "value": self._apply_value,
            "connection": self._apply_connection,
        }

    @classmethod
    def connect(
        cls,
        base_url: str,
        host: HostAdapter,
        audience: str,
        settings: PollSettings = None
    ) -> "PollClient":
        """Build a client over HTTP; settings default to the ``HIVE_POLL_*`` environment."""
        settings = settings or PollSettings.from_env()
        transport = RelayClient(base_url, timeout=settings.request_timeout)
        return cls(transport, host, ClientContext(audience=audience), settings)

    # ============ LIFECYCLE ============

    def _wait(self, seconds: float) -> bool:
        """Sleep until the delay passes or the client is stopped. True if stopped."""
        return self._stop.wait(seconds)

    def register(self) -> None:
        """Register with the relay and load the initial connection set."""
        ctx = self.context
        ctx.state = ClientState.REGISTERING
        data = self.transport.register(ctx.audience, ctx.app_id)

        ctx.app_id = data.get("appId", ctx.app_id)
        initial = data.get("initialState") or {}
        ctx.connections = {c["id"]: c for c in initial.get("connections", [])}
        ctx.consecutive_failures = 0
        ctx.poll_interval = self.settings.min_interval
        ctx.state = ClientState.POLLING
        logger.info("Registered %s client as %s", ctx.audience, ctx.app_id)

    def run(self) -> None:
        """Poll until stopped or until connectivity is lost for good."""
        while not self._stop.is_set():
            delay = self.poll_once()
            if delay is None or self._wait(delay):
                break
        if self.context.state != ClientState.ERROR:
            self.context.state = ClientState.DISCONNECTED

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self.context.auto_update = True
        self._thread = threading.Thread(
            target=self.run, name=f"hive-poll-{self.context.audience}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel the loop; takes effect before the next scheduled wake-up."""
        self.context.auto_update = False
        self._stop.set()
        thread = self._thread
        self._thread = None
        # Called from the poll thread itself (a host callback): the loop exits on its own
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def set_auto_update(self, enabled: bool) -> None:
        if enabled:
            self.start()
        else:
            self.stop()

    # ============ POLL CYCLE ============

    def poll_once(self) -> Optional[float]:
        """
        Run one cycle.

        Returns:
            The delay before the next cycle, or None once the client
            is in the terminal error state.
        """
        ctx = self.context
        with self._lock:
            if ctx.state == ClientState.ERROR:
                return None

            try:
                if ctx.app_id is None or ctx.state in (ClientState.DISCONNECTED, ClientState.REGISTERING):
                    self.register()

                updates = self.transport.fetch_updates(
                    ctx.audience, ctx.last_update_timestamp, ctx.app_id
                )
                if updates:
                    applied = self._apply_all(updates)
                    if applied:
                        self.transport.acknowledge(applied)
                    ctx.poll_interval = self.settings.min_interval
                    newest = max((u.get("timestamp") or 0) for u in updates)
                    ctx.last_update_timestamp = max(ctx.last_update_timestamp, newest)
                else:
                    ctx.poll_interval = min(
                        ctx.poll_interval * self.settings.backoff_factor,
                        self.settings.max_interval
                    )
            except TransientIOError as exc:
                return self._handle_transport_failure(exc)
            except HiveError as exc:
                self._fail(f"Relay rejected {ctx.audience} client: {exc}")
                return None

            ctx.consecutive_failures = 0
            ctx.state = ClientState.POLLING
            return ctx.poll_interval

    def _handle_transport_failure(self, exc: TransientIOError) -> Optional[float]:
        ctx = self.context
        ctx.consecutive_failures += 1
        ctx.poll_interval = self.settings.max_interval
        ctx.last_error = str(exc)
        ctx.state = ClientState.BACKOFF
        logger.warning(
            "Poll failed for %s (%d consecutive): %s",
            ctx.audience, ctx.consecutive_failures, exc,
        )

        if ctx.consecutive_failures > self.settings.failure_threshold:
            if not self._reconnect():
                return None
        return ctx.poll_interval

    def _reconnect(self) -> bool:
        """Bounded re-registration. False if the client gave up or was stopped."""
        ctx = self.context
        attempts = self.settings.max_reconnect_attempts

        for attempt in range(1, attempts + 1):
            try:
                self.register()
                logger.info("Reconnected %s client after %d attempt(s)", ctx.audience, attempt)
                return True
            except TransientIOError as exc:
                ctx.last_error = str(exc)
                ctx.state = ClientState.BACKOFF
                logger.warning("Reconnect attempt %d/%d failed: %s", attempt, attempts, exc)
            except HiveError as exc:
                ctx.last_error = str(exc)
                break

            if attempt < attempts and self._wait(self.settings.reconnect_delay * attempt):
                return False

        self._fail(
            f"Lost connection to relay after {attempts} reconnect attempts: {ctx.last_error}"
        )
        return False

    def _fail(self, message: str) -> None:
        ctx = self.context
        ctx.state = ClientState.ERROR
        ctx.last_error = message
        logger.error(message)
        self.host.notify_error(message)

    # ============ APPLYING UPDATES ============

    def _apply_all(self, updates: list[dict]) -> list[str]:
        """Apply a batch; returns ids that are safe to acknowledge."""
        applied = []
        for update in updates:
            try:
                self.apply_update(update)
            except Exception as exc:  # noqa: BLE001 - host failures must not stop the loop
                logger.error("Failed to apply update %s: %s", update.get("id"), exc)
                self._report("ApplyError", str(exc), {"updateId": update.get("id")})
                continue
            if update.get("id"):
                applied.append(update["id"])
        return applied

    def apply_update(self, update: dict) -> None:
        """
        Apply one update through the host. Redelivered ids are skipped;
        the host calls themselves are idempotent.
        """
        update_id = update.get("id")
        if update_id and self.context.has_applied(update_id):
            logger.debug("Skipping redelivered update %s", update_id)
            return

        handler = self._handlers.get(update.get("type"))
        if handler is None:
            logger.warning("Ignoring update %s of unknown type %r", update_id, update.get("type"))
        else:
            handler(update.get("content") or {})
        self.context.remember(update_id)

    def _apply_selection(self, content) -> None:
        ref = _selection_ref(content)
        if ref:
            self.host.highlight_remote(ref)

    def _apply_value(self, content: dict) -> None:
        ref = content.get("targetRef")
        if not ref:
            logger.warning("Value update without targetRef: %s", content)
            return
        self.host.protect_local_ref(ref)
        self.host.apply_remote_value(ref, content.get("value"))

    def _apply_connection(self, content: dict) -> None:
        connection = content.get("connection") or {}
        connection_id = connection.get("id")
        if not connection_id:
            return

        if content.get("action") == "deleted" or not connection.get("active", True):
            self.context.connections.pop(connection_id, None)
            return

        self.context.connections[connection_id] = connection
        if connection.get("targetRef"):
            self.host.protect_local_ref(connection["targetRef"])

    # ============ SENDING LOCAL CHANGES ============

    def broadcast_selection(self, selection: Optional[dict] = None) -> bool:
        """
        Send the local selection to the other side.

        Retries transient failures with growing delay; a failed
        broadcast is logged and does not block later ones.
        """
        if selection is None:
            selection = self.host.get_local_selection()
        if selection is None:
            return False
        return self._send_with_retry(
            "selection broadcast",
            lambda: self.transport.broadcast_selection(self.context.audience, selection, _now_ms()),
        )

    def push_value(self, connection_id: str, value: Any) -> bool:
        """Send a local value edit on a paired locator."""
        return self._send_with_retry(
            "value push",
            lambda: self.transport.push_value(connection_id, value, _now_ms()),
        )

    def _send_with_retry(self, what: str, send: Callable[[], Any]) -> bool:
        attempts = self.settings.broadcast_attempts
        last_error = None

        for attempt in range(attempts):
            try:
                with self._lock:
                    send()
                return True
            except TransientIOError as exc:
                last_error = exc
                logger.warning("%s attempt %d/%d failed: %s", what, attempt + 1, attempts, exc)
            except HiveError as exc:
                logger.error("%s rejected: %s", what, exc)
                return False

            if attempt < attempts - 1:
                if self._wait(self.settings.broadcast_base_delay * (2 ** attempt)):
                    break

        logger.error("%s failed after %d attempts: %s", what, attempts, last_error)
        self._report("BroadcastError", f"{what} failed: {last_error}")
        return False

    def _report(self, error_type: str, message: str, metadata: dict = None) -> None:
        """Best-effort error report to the relay. Never raises."""
        try:
            self.transport.report_error(
                self.context.audience, error_type, message, metadata, self.context.app_id
            )
        except HiveError as exc:
            logger.debug("Could not report %s: %s", error_type, exc)


def _selection_ref(content) -> Optional[str]:
    if isinstance(content, str):
        return content
    if not isinstance(content, dict):
        return None
    for key in ("ref", "range", "elementId"):
        if content.get(key):
            return content[key]
    return None
