import math

import pytest

from utilkit.pcm import (
    PCMChannelsConverter,
    PCMError,
    PCMSampleRateConverter,
    PCMSilenceDetector,
    PCMSilenceDetectorOptions,
    convert_pcm_bit_depth,
    max_pcm_sample,
    pcm_level,
    pcm_normalize,
)
from utilkit.timing import MILLISECOND


def _run(converter, samples):
    for s in samples:
        converter.add(s)


def test_pcm_level():
    assert pcm_level([1, 2, 3]) == 2.160246899469287


def test_pcm_level_empty_is_nan():
    level = pcm_level([])
    assert math.isnan(level)
    assert repr(level) == "nan"


def test_max_pcm_sample():
    assert max_pcm_sample(16) == 32767
    assert max_pcm_sample(8) == 127


def test_pcm_normalize_nothing_to_do():
    i = [10000, max_pcm_sample(16), -10000]
    assert pcm_normalize(i, 16) == i


def test_pcm_normalize():
    assert pcm_normalize([10000, 0, -10000], 16) == [32767, 0, -32767]


def test_pcm_normalize_all_zero_raises():
    with pytest.raises(ZeroDivisionError):
        pcm_normalize([0, 0], 16)


def test_convert_pcm_bit_depth_source_cases():
    assert convert_pcm_bit_depth(1 >> 8, 16, 16) == 1 >> 8
    assert convert_pcm_bit_depth(1 >> 24, 32, 16) == 1 >> 8
    assert convert_pcm_bit_depth(1 >> 8, 16, 32) == 1 >> 24


def test_convert_pcm_bit_depth_shifts():
    assert convert_pcm_bit_depth(1, 16, 32) == 65536
    assert convert_pcm_bit_depth(65536, 32, 16) == 1
    assert convert_pcm_bit_depth(-256, 16, 8) == -1


@pytest.fixture
def output():
    return []


def test_sample_rate_converter_nothing_to_do(output):
    i = list(range(1, 21))
    _run(PCMSampleRateConverter(1, 1, 1, output.append), i)
    assert output == i


def test_sample_rate_converter_down_simple(output):
    _run(PCMSampleRateConverter(5, 3, 1, output.append), range(1, 21))
    assert output == [1, 2, 4, 6, 7, 9, 11, 12, 14, 16, 17, 19]


def test_sample_rate_converter_down_multi_channels(output):
    _run(PCMSampleRateConverter(4, 2, 2, output.append), range(1, 21))
    assert output == [1, 2, 4, 5, 8, 9, 12, 13, 16, 17]


def test_sample_rate_converter_down_realistic(output):
    _run(PCMSampleRateConverter(44100, 16000, 2, output.append), range(1, 4 * 44100 + 1))
    assert len(output) == 4 * 16000


def test_sample_rate_converter_up_simple(output):
    _run(PCMSampleRateConverter(3, 5, 1, output.append), range(1, 11))
    assert output == [1, 1, 2, 2, 3, 4, 4, 5, 5, 6, 7, 7, 8, 8, 9, 10, 10]


def test_sample_rate_converter_up_multi_channels(output):
    _run(PCMSampleRateConverter(3, 5, 2, output.append), range(1, 11))
    assert output == [1, 2, 1, 2, 3, 4, 3, 4, 5, 6, 7, 8, 7, 8, 9, 10, 9, 10]


def test_sample_rate_converter_reset(output):
    c = PCMSampleRateConverter(3, 5, 1, output.append)
    _run(c, range(1, 11))
    output.clear()
    c.reset()
    _run(c, range(1, 11))
    assert output == [1, 1, 2, 2, 3, 4, 4, 5, 5, 6, 7, 7, 8, 8, 9, 10, 10]


def test_sample_rate_converter_wraps_callback_error():
    def failing(_sample):
        raise RuntimeError("boom")

    c = PCMSampleRateConverter(1, 1, 1, failing)
    with pytest.raises(PCMError) as info:
        c.add(1)
    assert isinstance(info.value.__cause__, RuntimeError)


def test_channels_converter_nothing_to_do(output):
    i = list(range(1, 21))
    _run(PCMChannelsConverter(3, 3, output.append), i)
    assert output == i


def test_channels_converter_throw_away(output):
    _run(PCMChannelsConverter(3, 1, output.append), range(1, 21))
    assert output == [1, 4, 7, 10, 13, 16, 19]


def test_channels_converter_repeat(output):
    _run(PCMChannelsConverter(1, 2, output.append), range(1, 21))
    assert output == [v for i in range(1, 21) for v in (i, i)]


def test_channels_converter_wraps_callback_error():
    def failing(_sample):
        raise ValueError("bad")

    c = PCMChannelsConverter(1, 2, failing)
    with pytest.raises(PCMError):
        c.add(1)


def test_silence_detector():
    sd = PCMSilenceDetector(
        PCMSilenceDetectorOptions(
            max_silence_level=2,
            min_silence_duration=400 * MILLISECOND,
            sample_rate=5,
            step_duration=200 * MILLISECOND,
        )
    )

    assert sd.add([3, 1, 3, 1]) == []
    assert sd.analysis_count == 1

    assert sd.add([1, 3, 3, 1]) == []
    assert sd.analysis_count == 5

    assert sd.add([1]) == [[1, 1, 3, 3, 1, 1]]
    assert sd.analysis_count == 2

    vs = sd.add([1, 1, 1, 1, 3, 3, 1, 1, 1, 1, 3, 3, 1, 1, 1, 1])
    assert vs == [[1, 1, 3, 3, 1, 1], [1, 1, 3, 3, 1, 1]]
    assert sd.analysis_count == 2

    vs = sd.add([1, 1, 1, 3, 3, 1, 3, 3, 1, 3, 3, 1, 1, 1])
    assert vs == [[1, 1, 3, 3, 1, 3, 3, 1, 3, 3, 1, 1]]
    assert sd.analysis_count == 2


def test_silence_detector_reset():
    sd = PCMSilenceDetector(
        PCMSilenceDetectorOptions(
            max_silence_level=2,
            min_silence_duration=400 * MILLISECOND,
            sample_rate=5,
            step_duration=200 * MILLISECOND,
        )
    )
    sd.add([1, 1, 3, 3, 1])
    sd.reset()
    assert sd.analysis_count == 0


def test_silence_detector_defaults():
    sd = PCMSilenceDetector(PCMSilenceDetectorOptions(sample_rate=1000))
    assert sd.options.min_silence_duration == 1000 * MILLISECOND
    assert sd.options.step_duration == 30 * MILLISECOND


def test_silence_detector_without_samples_per_step_raises():
    with pytest.raises(ValueError):
        PCMSilenceDetector(PCMSilenceDetectorOptions())