"""UDP transport for the Flex radio VITA-49 audio and discovery stream."""

from __future__ import annotations

import errno
import logging
import socket
import time
from typing import Callable, Optional, Union

from flexwave.stream import (
    MAX_VITA_PACKETS_TO_SEND,
    US_OF_AUDIO_PER_VITA_PACKET,
    VITA_PORT,
)
from flexwave.vita import MAX_PACKET_SIZE, VitaPacket

log = logging.getLogger(__name__)

RADIO_VITA_PORT = 4993
_RETRY_DELAY_S = 0.001


def _now_us() -> int:
    return time.monotonic_ns() // 1000


class FlexVitaSocket:
    """Owns the non-blocking UDP socket that carries VITA packets.

    The socket listens on ``port`` so that discovery broadcasts and audio
    from the radio arrive; packets leave for the radio at ``radio_port``.
    """

    def __init__(
        self,
        on_datagram: Optional[Callable[[bytes], None]] = None,
        *,
        port: int = VITA_PORT,
        radio_port: int = RADIO_VITA_PORT,
        bind_host: str = "",
        max_reads: int = MAX_VITA_PACKETS_TO_SEND,
        send_deadline_us: int = US_OF_AUDIO_PER_VITA_PACKET,
    ) -> None:
        self.port = port
        self.radio_port = radio_port
        self.bind_host = bind_host
        self.max_reads = max_reads
        self.send_deadline_us = send_deadline_us
        self.radio_ip: Optional[str] = None
        self._on_datagram = on_datagram
        self._sock: Optional[socket.socket] = None

    @property
    def is_open(self) -> bool:
        """True while the socket is bound."""
        return self._sock is not None

    @property
    def local_address(self) -> Optional[tuple[str, int]]:
        """The address the socket is bound to, or None when closed."""
        if self._sock is None:
            return None
        host, port = self._sock.getsockname()[:2]
        return host, port

    @property
    def radio_address(self) -> Optional[tuple[str, int]]:
        """Where outgoing packets are sent, or None before a radio is set."""
        if self.radio_ip is None:
            return None
        return self.radio_ip, self.radio_port

    def __enter__(self) -> "FlexVitaSocket":
        if self._sock is None:
            self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        """Bind a fresh non-blocking UDP socket, closing any previous one."""
        self.close()
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.bind((self.bind_host, self.port))
        except OSError as exc:
            log.error(
                "Got socket error %s (%s) while binding", exc.errno, exc.strerror
            )
            sock.close()
            raise
        sock.setblocking(False)
        self._sock = sock

    def set_radio(self, ip: str) -> None:
        """Send future packets to the radio at ``ip``."""
        try:
            socket.inet_aton(ip)
        except (OSError, TypeError) as exc:
            raise ValueError(f"invalid radio address {ip!r}") from exc
        self.radio_ip = ip
        log.info("Connected to radio successfully")

    def read_pending(self) -> list[bytes]:
        """Read the datagrams waiting on the socket, at most ``max_reads``."""
        if self._sock is None:
            return []
        received: list[bytes] = []
        for _ in range(self.max_reads):
            try:
                data = self._sock.recv(MAX_PACKET_SIZE)
            except (BlockingIOError, InterruptedError):
                break
            except OSError as exc:
                log.warning("Error reading from VITA socket: %s", exc)
                break
            if not data:
                break
            received.append(data)
            if self._on_datagram is not None:
                self._on_datagram(data)
        return received

    def send(self, data: Union[bytes, VitaPacket]) -> bool:
        """Send one packet to the radio; returns whether it went out.

        A send refused for lack of buffer space is retried until the time
        for one packet of audio has passed.
        """
        if self._sock is None:
            return False
        address = self.radio_address
        if address is None:
            log.error("No radio address set, dropping packet")
            return False
        payload = data.to_bytes() if isinstance(data, VitaPacket) else bytes(data)

        start = _now_us()
        tries = 0
        while True:
            tries += 1
            try:
                self._sock.sendto(payload, address)
            except OSError as exc:
                if exc.errno not in (errno.ENOMEM, errno.ENOBUFS):
                    log.error(
                        "Got socket error %s (%s) while sending",
                        exc.errno,
                        exc.strerror,
                    )
                    return False
                if _now_us() - start > self.send_deadline_us:
                    log.error(
                        "Network took too long to become ready, dropping packet"
                    )
                    return False
                time.sleep(_RETRY_DELAY_S)
                continue
            if tries > 1:
                log.warning("Needed %d tries to send a packet", tries)
            return True

    def close(self) -> None:
        """Close the socket if it is open."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None