"""PCM sample helpers: level, normalisation, bit depth, rate, channels and silence."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from utilkit.timing import MILLISECOND, SECOND

SampleFunc = Callable[[int], Any]


class PCMError(Exception):
    """A PCM conversion failed."""


def _div(a: int, b: int) -> int:
    """Integer division truncating toward zero."""
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _seconds(d: int) -> float:
    """Seconds in a nanosecond duration, computed in two parts for precision."""
    sign = -1 if d < 0 else 1
    d = abs(d)
    return sign * (float(d // SECOND) + float(d % SECOND) / 1e9)


def pcm_level(samples: list[int]) -> float:
    """Return the root mean square of the samples (NaN for no samples)."""
    if not samples:
        return math.nan
    total = sum(math.pow(float(s), 2) for s in samples)
    return math.sqrt(total / float(len(samples)))


def max_pcm_sample(bit_depth: int) -> int:
    """Return the largest sample value a signed sample of bit_depth bits holds."""
    return int(math.pow(2, float(bit_depth)) / 2.0) - 1


def pcm_normalize(samples: list[int], bit_depth: int) -> list[int]:
    """Scale samples so that the loudest one reaches the bit depth maximum."""
    if not samples:
        return []
    peak = max(abs(s) for s in samples)
    top = max_pcm_sample(bit_depth)
    return [_div(s * top, peak) for s in samples]


def convert_pcm_bit_depth(src_sample: int, src_bit_depth: int, dst_bit_depth: int) -> int:
    """Shift a sample from one bit depth to another."""
    if src_bit_depth == dst_bit_depth:
        return src_sample
    if src_bit_depth < dst_bit_depth:
        return src_sample << (dst_bit_depth - src_bit_depth)
    return src_sample >> (src_bit_depth - dst_bit_depth)


def _emit(fn: SampleFunc, sample: int) -> None:
    try:
        fn(sample)
    except Exception as err:
        raise PCMError(f"handling sample failed: {err}") from err


class PCMSampleRateConverter:
    """Converts interleaved samples from one sample rate to another."""

    def __init__(
        self,
        src_sample_rate: int,
        dst_sample_rate: int,
        num_channels: int,
        fn: SampleFunc,
    ) -> None:
        self._src = src_sample_rate
        self._dst = dst_sample_rate
        self._num_channels = num_channels
        self._fn = fn
        self.reset()

    def reset(self) -> None:
        """Forget buffered samples and counters."""
        self._buffers: list[list[int]] = [[] for _ in range(self._num_channels)]
        self._channels_processed = 0
        self._samples_outputted = 0
        self._samples_processed = 0

    def _ratio_point(self) -> float:
        return 1.0 + float(self._samples_outputted) * float(self._src) / float(self._dst)

    def add(self, sample: int) -> None:
        """Feed one sample; converted samples are handed to the sample func."""
        if self._src == self._dst:
            _emit(self._fn, sample)
            return

        self._channels_processed += 1
        if self._channels_processed > self._num_channels:
            self._channels_processed = 1
        if self._channels_processed == self._num_channels:
            self._samples_processed += 1

        self._buffers[self._channels_processed - 1].append(sample)

        if self._src > self._dst:
            waiting = (
                self._samples_outputted > 0
                and float(self._samples_processed) < self._ratio_point()
            )
            if waiting or self._channels_processed < self._num_channels:
                return
            buffers = self._buffers
            self._buffers = [[] for _ in range(self._num_channels)]
            for idx, buf in enumerate(buffers):
                merged = _div(sum(buf), len(buf))
                # Keep any channels not yet emitted if the callback fails.
                _emit(self._fn, merged)
                buffers[idx] = []
            self._samples_outputted += 1
            return

        if self._channels_processed < self._num_channels:
            return

        while (
            self._samples_outputted == 0
            or float(self._samples_processed) + 1.0 > self._ratio_point()
        ):
            for buf in self._buffers:
                if len(buf) != 1:
                    raise PCMError(f"invalid buffer item length {len(buf)}")
                _emit(self._fn, buf[0])
            self._samples_outputted += 1

        self._buffers = [[] for _ in range(self._num_channels)]


class PCMChannelsConverter:
    """Converts interleaved samples from one channel count to another."""

    def __init__(self, src_num_channels: int, dst_num_channels: int, fn: SampleFunc) -> None:
        self._src = src_num_channels
        self._dst = dst_num_channels
        self._fn = fn
        self._src_samples = 0

    def reset(self) -> None:
        """Restart at the first channel."""
        self._src_samples = 0

    def add(self, sample: int) -> None:
        """Feed one sample; converted samples are handed to the sample func."""
        if self._src == self._dst:
            _emit(self._fn, sample)
            return

        if self._src_samples == self._src:
            self._src_samples = 0
        self._src_samples += 1

        if self._src > self._dst:
            if self._src_samples > self._dst:
                return
            _emit(self._fn, sample)
            return

        if self._src_samples < self._src:
            repeats = 1
        else:
            repeats = max(self._dst - self._src + 1, 0)
        for _ in range(repeats):
            _emit(self._fn, sample)


@dataclass
class PCMSilenceDetectorOptions:
    """Silence detector settings; durations are in nanoseconds."""

    max_silence_level: float = 0.0
    min_silence_duration: int = 0
    sample_rate: int = 0
    step_duration: int = 0


@dataclass
class _Analysis:
    level: float
    samples: list[int]


class PCMSilenceDetector:
    """Finds stretches of sound framed by long enough silences."""

    def __init__(self, options: PCMSilenceDetectorOptions | None = None) -> None:
        o = options or PCMSilenceDetectorOptions()
        self._lock = threading.Lock()
        self._max_silence_level = o.max_silence_level
        min_silence = o.min_silence_duration or SECOND
        step = o.step_duration or 30 * MILLISECOND
        self.options = PCMSilenceDetectorOptions(
            max_silence_level=o.max_silence_level,
            min_silence_duration=min_silence,
            sample_rate=o.sample_rate,
            step_duration=step,
        )
        self._samples_per_analysis = int(math.floor(float(o.sample_rate) * _seconds(step)))
        if self._samples_per_analysis <= 0:
            raise ValueError("sample rate and step duration give no samples per analysis")
        self._min_analyses_per_silence = int(math.floor(_seconds(min_silence) / _seconds(step)))
        self._analyses: list[_Analysis] = []
        self._buf: list[int] = []

    @property
    def analysis_count(self) -> int:
        """Number of analysed steps kept for the next call to add."""
        with self._lock:
            return len(self._analyses)

    def reset(self) -> None:
        """Drop buffered samples and analyses."""
        with self._lock:
            self._analyses = []
            self._buf = []

    def add(self, samples: Iterable[int]) -> list[list[int]]:
        """Buffer samples and return the sound stretches found between silences."""
        with self._lock:
            self._buf.extend(samples)
            step = self._samples_per_analysis
            while len(self._buf) >= step:
                chunk = self._buf[:step]
                self._analyses.append(_Analysis(pcm_level(chunk), chunk))
                del self._buf[:step]
            return self._scan()

    def _scan(self) -> list[list[int]]:
        analyses = self._analyses
        minimum = self._min_analyses_per_silence
        valid: list[list[int]] = []
        leading = in_between = trailing = 0
        i = 0
        while i < len(analyses):
            if analyses[i].level < self._max_silence_level:
                if in_between == 0:
                    leading += 1
                    if leading > minimum:
                        cut = leading - minimum
                        del analyses[:cut]
                        i -= cut
                        leading = minimum
                    i += 1
                    continue

                trailing += 1
                if trailing < minimum:
                    i += 1
                    continue

                valid.append([s for a in analyses[: i + 1] for s in a.samples])
                cut = leading + in_between
                del analyses[:cut]
                i -= cut
                leading, in_between, trailing = trailing, 0, 0
            else:
                if i == 0:
                    del analyses[0]
                    continue
                if in_between == 0 and leading < minimum:
                    del analyses[: i + 1]
                    i = 0
                    continue
                if trailing > 0:
                    in_between += trailing
                    trailing = 0
                in_between += 1
            i += 1
        return valid