# flexwave

`flexwave` lets a Python program act as a FreeDV waveform for Flex
6000/8000 series radios. It speaks the SmartSDR TCP control protocol and
moves VITA-49 audio between the radio and your code over UDP. It needs
only the standard library (Python 3.10 or later).

## Modules

- `flexwave.vita` defines `VitaPacket`, a dataclass that packs
  (`to_bytes`) and unpacks (`VitaPacket.from_bytes`) VITA-49 datagrams.
  - `is_from_flex()` checks the Flex OUI in the class id.
  - `is_discovery()` spots discovery broadcasts.
  - `payload_text()` reads the payload as a NUL-terminated string.
  - `float_samples()` decodes big-endian 32-bit floats.
  - `encode_float_samples(samples)` builds a stereo big-endian float
    payload, with each sample copied to both channels.
- `flexwave.keyvalue.parse_parameters(text)` splits the space-separated
  `key=value` words that the radio sends in status lines and discovery
  payloads.
- `flexwave.messages` holds the events that the parts exchange:
  `FlexConnectRadioMessage`, `FlexRadioDiscoveredMessage`,
  `ReceiveVitaMessage`, `SendVitaMessage`, `RadioConnectionStatus`,
  `FrequencyChange`, `EnableReporting`, `DisableReporting`, `RequestTx`,
  `RequestRx` and `RequestFreeDVMode`. Text fields are clipped to 31 bytes.
- `flexwave.resample` has two resamplers. Both keep their filter memory
  between calls and both use a 48-tap low-pass FIR.
  - `Upsampler.process(samples, scale_factor)` turns 16-bit 8 kHz samples
    into 24 kHz floats.
  - `Downsampler.process(samples)` turns 16-bit 24 kHz samples into 8 kHz
    samples. Its input length must be a multiple of three.
- `flexwave.control.FlexControlSession` is the control-protocol state
  machine. It does no I/O itself: bytes go in through `feed`, commands go out
  through a `write` callable, and events go out through a `publish` callable.
  - When the radio sends its handle, it creates the `FreeDV-USB` (FDVU) and
    `FreeDV-LSB` (FDVL) waveforms.
  - It follows slice and interlock status.
  - `request_tx` and `request_rx` key and unkey the transmitter.
  - `set_mode` applies the filter widths of each `FreeDVMode`.
  - `report_callsign` posts spots.
  - `handle_timeout` fails any commands that are still waiting.
  - `shutdown` restores the slice mode and unsubscribes before it closes the
    session.
- `flexwave.tcpclient.FlexTcpClient` connects a session to the radio on TCP
  port 4992 with a non-blocking socket. Call `poll()` regularly. It finishes
  connecting, reads lines, expires command timeouts and reconnects after a
  failure, waiting 10 seconds by default. `close()` (also run on leaving a
  `with` block) runs the session shutdown before it closes the socket.
- `flexwave.stream.FlexVitaStream` converts between VITA audio packets and
  8 kHz sample queues. It holds no socket.
  - `audio_in[Channel.USER]` and `audio_in[Channel.RADIO]` hold samples to
    send.
  - `audio_out[...]` receives decoded audio.
  - `handle_datagram` processes one datagram. It returns a
    `FlexRadioDiscoveredMessage` for discovery broadcasts.
  - `send_audio_out` paces queued audio into packets for the live stream. It
    returns them and hands each one to `send` as a `SendVitaMessage`.
  - `set_reporting` and `set_transmitting` gate and switch the audio.
- `flexwave.vitasocket.FlexVitaSocket` is the UDP socket. It listens on port
  4992 and sends to the radio on port 4993.
  - `read_pending()` returns up to ten waiting datagrams.
  - `send()` takes bytes or a `VitaPacket`. When the network has no buffer
    space, it retries for up to one packet's worth of audio time.

## Examples

Parsing a discovery broadcast:

```python
from flexwave.keyvalue import parse_parameters
from flexwave.vita import VitaPacket

params = parse_parameters("nickname=Shack callsign=N0CALL ip=192.0.2.10")
print(params["ip"])  # 192.0.2.10

def on_datagram(datagram: bytes) -> None:
    packet = VitaPacket.from_bytes(datagram)
    if packet.is_from_flex() and packet.is_discovery():
        print(parse_parameters(packet.payload_text()))
```

Driving the control connection and the audio stream together:

```python
import time

from flexwave.messages import RequestRx, RequestTx
from flexwave.stream import FlexVitaStream
from flexwave.tcpclient import FlexTcpClient
from flexwave.vitasocket import FlexVitaSocket

with FlexVitaSocket() as udp:
    udp.set_radio("192.0.2.10")
    stream = FlexVitaStream(send=lambda message: udp.send(message.packet))

    def on_event(event: object) -> None:
        if isinstance(event, RequestTx):
            stream.set_transmitting(True)
        elif isinstance(event, RequestRx):
            stream.set_transmitting(False)

    with FlexTcpClient(publish=on_event) as client:
        client.connect("192.0.2.10")
        while True:
            client.poll()
            for datagram in udp.read_pending():
                stream.handle_datagram(datagram)
            stream.send_audio_out()
            time.sleep(0.02)
```

## What it does not do

`flexwave` contains no FreeDV modem or codec, and it does not touch sound
devices. Samples taken from `FlexVitaStream.audio_out` must be decoded
elsewhere, and samples for `audio_in` must be produced elsewhere. The
package also has no command-line program and no event loop of its own. Your
code wires the parts together and calls `poll`, `read_pending` and
`send_audio_out` on a schedule.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```