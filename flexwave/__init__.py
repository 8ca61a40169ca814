"""FreeDV waveform support for Flex 6000/8000 series radios: control protocol, VITA-49 audio and resampling."""

__version__ = "0.1.0"
__all__ = ["control", "keyvalue", "messages", "resample", "stream", "tcpclient", "vita", "vitasocket"]