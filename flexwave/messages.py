"""Messages exchanged between the Flex radio tasks and the rest of the system."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

from flexwave.vita import VitaPacket

STR_SIZE = 32


class MessageType(IntEnum):
    """Identifiers of the Flex-specific messages."""

    CONNECT_RADIO = 1
    VITA_RECEIVE = 2
    VITA_SEND = 3
    DISCOVERED_RADIO = 4


def _clip(text: str | None) -> str:
    """Limit text to what fits a fixed field, leaving room for the terminator."""
    if text is None:
        return ""
    return text.encode("utf-8")[: STR_SIZE - 1].decode("utf-8", errors="ignore")


@dataclass(frozen=True)
class FlexConnectRadioMessage:
    """Request to connect to the radio at ``ip``."""

    ip: str | None = ""
    message_type: ClassVar[MessageType] = MessageType.CONNECT_RADIO

    def __post_init__(self) -> None:
        object.__setattr__(self, "ip", _clip(self.ip))


@dataclass(frozen=True)
class FlexRadioDiscoveredMessage:
    """A radio found through a discovery broadcast."""

    description: str | None = ""
    ip: str | None = ""
    message_type: ClassVar[MessageType] = MessageType.DISCOVERED_RADIO

    def __post_init__(self) -> None:
        object.__setattr__(self, "description", _clip(self.description))
        object.__setattr__(self, "ip", _clip(self.ip))


@dataclass(frozen=True)
class ReceiveVitaMessage:
    """A VITA packet received from the radio."""

    packet: VitaPacket | None = None
    length: int = 0
    message_type: ClassVar[MessageType] = MessageType.VITA_RECEIVE


@dataclass(frozen=True)
class SendVitaMessage:
    """A VITA packet queued for sending to the radio."""

    packet: VitaPacket | None = None
    length: int = 0
    message_type: ClassVar[MessageType] = MessageType.VITA_SEND


@dataclass(frozen=True)
class RadioConnectionStatus:
    """Whether the control connection to the radio is up."""

    connected: bool


@dataclass(frozen=True)
class FrequencyChange:
    """The frequency of the active slice, in Hz."""

    frequency_hz: int


@dataclass(frozen=True)
class EnableReporting:
    """Reporting services should start."""


@dataclass(frozen=True)
class DisableReporting:
    """Reporting services should stop."""


@dataclass(frozen=True)
class RequestTx:
    """Switch to transmit."""


@dataclass(frozen=True)
class RequestRx:
    """Switch back to receive."""


@dataclass(frozen=True)
class RequestFreeDVMode:
    """Ask for the current FreeDV mode to be announced."""