"""8 kHz <-> 24 kHz sample-rate conversion for Flex audio streams."""

from __future__ import annotations

from typing import Iterable

OS_RATIO = 3
TAPS_24K = 48
TAPS_8K = TAPS_24K // OS_RATIO
FLOAT_TO_SHORT = 32767.0
SHORT_TO_FLOAT = 1.0 / FLOAT_TO_SHORT

# Low-pass FIR with cut-off at one third of the band, scaled to 16 bits.
FILTER_24K = (
    -20, -39, -21, 33, 77, 45, -72, -169, -98, 145, 335, 193,
    -268, -613, -353, 471, 1097, 649, -861, -2134, -1393, 2064, 6903, 10412,
    10412, 6903, 2064, -1393, -2134, -861, 649, 1097, 471, -353, -613, -268,
    193, 335, 145, -98, -169, -72, 45, 77, 33, -21, -39, -20,
)

_PHASES = tuple(FILTER_24K[phase::OS_RATIO] for phase in range(OS_RATIO))
_ROUNDING = 0x7FFF
_INT16_MIN = -32768
_INT16_MAX = 32767


def _to_int16(value: int) -> int:
    return ((value + 0x8000) & 0xFFFF) - 0x8000


def _checked_shorts(samples: Iterable[int]) -> list[int]:
    values = [int(s) for s in samples]
    for value in values:
        if not _INT16_MIN <= value <= _INT16_MAX:
            raise ValueError(f"sample {value} does not fit in 16 bits")
    return values


class Upsampler:
    """Converts 16-bit 8 kHz samples to 24 kHz floats, keeping filter memory."""

    def __init__(self) -> None:
        self._memory = [0] * TAPS_8K

    def process(self, samples: Iterable[int], scale_factor: float = 1.0) -> list[float]:
        """Return three floats for every input sample, multiplied by ``scale_factor``."""
        history = self._memory + _checked_shorts(samples)
        gain = scale_factor * OS_RATIO / 32768.0
        out: list[float] = []
        for start in range(len(history) - TAPS_8K):
            window = history[start : start + TAPS_8K]
            for phase in _PHASES:
                acc = sum(c * x for c, x in zip(phase, window)) >> 15
                out.append(acc * gain)
        self._memory = history[-TAPS_8K:]
        return out


class Downsampler:
    """Converts 16-bit 24 kHz samples to 8 kHz, keeping filter memory."""

    def __init__(self) -> None:
        self._memory = [0] * TAPS_24K

    def process(self, samples: Iterable[int]) -> list[int]:
        """Return one sample for every three input samples."""
        values = _checked_shorts(samples)
        if len(values) % OS_RATIO:
            raise ValueError(
                f"sample count {len(values)} is not a multiple of {OS_RATIO}"
            )
        history = self._memory + values
        out: list[int] = []
        for start in range(0, len(values), OS_RATIO):
            window = history[start : start + TAPS_24K]
            acc = _ROUNDING + sum(c * x for c, x in zip(FILTER_24K, window))
            out.append(_to_int16(acc >> 15))
        self._memory = history[-TAPS_24K:]
        return out