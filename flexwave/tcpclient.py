"""Non-blocking TCP transport for the Flex radio control channel."""

from __future__ import annotations

import errno
import logging
import select
import socket
import time
from typing import Callable, Optional

from flexwave.control import COMMAND_TIMEOUT_S, CONTROL_PORT, FlexControlSession

log = logging.getLogger(__name__)

RECONNECT_DELAY_S = 10.0
SHUTDOWN_GRACE_S = 4 * COMMAND_TIMEOUT_S
_RECV_SIZE = 4096

_IN_PROGRESS = {
    code
    for code in (
        errno.EINPROGRESS,
        errno.EWOULDBLOCK,
        errno.EALREADY,
        getattr(errno, "WSAEWOULDBLOCK", None),
    )
    if code is not None
}


class FlexTcpClient:
    """Owns the control socket and drives a :class:`FlexControlSession`.

    Nothing blocks: call :meth:`poll` regularly to finish connecting, read
    incoming lines, expire command timeouts and reconnect after failures.
    """

    def __init__(
        self,
        publish: Optional[Callable[[object], None]] = None,
        *,
        port: int = CONTROL_PORT,
        clock: Callable[[], float] = time.monotonic,
        reconnect_delay: float = RECONNECT_DELAY_S,
        shutdown_grace: float = SHUTDOWN_GRACE_S,
    ) -> None:
        self.port = port
        self.reconnect_delay = reconnect_delay
        self.shutdown_grace = shutdown_grace
        self.ip: Optional[str] = None
        self.connecting = False
        self.reconnect_at: Optional[float] = None

        self._clock = clock
        self._sock: Optional[socket.socket] = None
        self.session = FlexControlSession(
            self._send,
            publish,
            clock=clock,
            on_write_error=self._on_write_error,
        )

    @property
    def connected(self) -> bool:
        """True once the radio has accepted the connection."""
        return self.session.connected

    def __enter__(self) -> "FlexTcpClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def connect(self, ip: str) -> None:
        """Start connecting to the radio at ``ip``, dropping any current link."""
        self.ip = ip
        self.reconnect_at = None
        self._cleanup(reconnect=False)

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
        sock.setblocking(False)
        self._sock = sock
        self.connecting = True

        log.info("Connecting to radio at IP %s", ip)
        try:
            err = sock.connect_ex((ip, self.port))
        except OSError as exc:
            err = exc.errno or errno.EINVAL

        if err == 0:
            self._check_connection()
        elif err not in _IN_PROGRESS:
            log.error(
                "Got socket error %d (%s) while connecting", err, _describe(err)
            )
            self._abandon_attempt()

    def poll(self) -> None:
        """Do whatever work is due without blocking."""
        if (
            self.reconnect_at is not None
            and self.ip is not None
            and self._clock() >= self.reconnect_at
        ):
            self.connect(self.ip)

        if self.connecting:
            self._check_connection()
            if self.connecting:
                return

        if self._sock is None or not self.connected:
            return

        while self._sock is not None:
            try:
                data = self._sock.recv(_RECV_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError:
                data = b""
            if not data:
                log.error("Detected disconnect from socket, reattempting connect")
                self._cleanup(reconnect=True)
                return
            self.session.feed(data)

        deadline = self.session.timeout_deadline
        if deadline is not None and self._clock() >= deadline:
            self.session.handle_timeout()

    def close(self) -> None:
        """Undo the waveform setup with the radio, then close the socket."""
        self.reconnect_at = None
        if self._sock is None:
            return
        if not self.connected:
            self._cleanup(reconnect=False)
            return

        done = False

        def finished() -> None:
            nonlocal done
            done = True

        self.session.shutdown(finished)
        limit = time.monotonic() + self.shutdown_grace
        while not done and self._sock is not None and time.monotonic() < limit:
            self.poll()
            if not done and self._sock is not None:
                select.select([self._sock], [], [], 0.01)
        self._cleanup(reconnect=False)

    def _check_connection(self) -> None:
        sock = self._sock
        if sock is None:
            return
        _, writable, _ = select.select([], [sock], [], 0)
        if not writable:
            return
        try:
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        except OSError as exc:
            err = exc.errno or errno.EIO

        if err == 0:
            self.connecting = False
            self.session.on_connected()
        elif err not in _IN_PROGRESS:
            log.error(
                "Got socket error %d (%s) while connecting", err, _describe(err)
            )
            self._abandon_attempt()

    def _abandon_attempt(self) -> None:
        self.connecting = False
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self.reconnect_at = self._clock() + self.reconnect_delay

    def _cleanup(self, reconnect: bool) -> None:
        if self._sock is not None:
            self.session.reset()
            self._sock.close()
            self._sock = None
            self.connecting = False
        if reconnect:
            self._schedule_reconnect()
        else:
            self.reconnect_at = None

    def _send(self, data: bytes) -> None:
        if self._sock is None:
            raise OSError(errno.ENOTCONN, _describe(errno.ENOTCONN))
        self._sock.sendall(data)

    def _on_write_error(self, exc: OSError) -> None:
        self._cleanup(reconnect=True)


def _describe(err: int) -> str:
    try:
        return errno.errorcode.get(err) or str(err)
    except (TypeError, ValueError):
        return str(err)