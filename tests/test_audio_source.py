"""Tests for the microphone source with sounddevice mocked out."""
import threading
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

try:
    from monitor import audio as audio_module
except OSError as exc:  # PortAudio shared library missing on this host
    pytest.skip(f"sounddevice unavailable: {exc}", allow_module_level=True)

from monitor.audio import AudioSourceConfig, MicrophoneSource
from monitor.decider import InvalidConfig
from monitor.source import DeviceBusy, InterruptedRead


@pytest.fixture
def mock_sd():
    with patch.object(audio_module.sd, "InputStream") as stream_cls, patch.object(
        audio_module.sd, "check_input_settings"
    ) as check:
        stream_cls.return_value = MagicMock()
        yield stream_cls, check


def make_source(**overrides):
    config = AudioSourceConfig(sample_rate=16000, block_size=256, read_timeout=0.2, **overrides)
    return MicrophoneSource(config)


def feed(stream_cls, *blocks):
    callback = stream_cls.call_args.kwargs["callback"]
    for block in blocks:
        callback(np.asarray(block, dtype=np.int16).reshape(-1, 1), len(block), None, None)


def test_open_configures_mono_int16_stream(mock_sd):
    stream_cls, _ = mock_sd
    source = make_source()

    source.open()

    kwargs = stream_cls.call_args.kwargs
    assert kwargs["samplerate"] == 16000
    assert kwargs["blocksize"] == 256
    assert kwargs["channels"] == 1
    assert kwargs["dtype"] == "int16"
    stream_cls.return_value.start.assert_called_once()
    assert source.is_open


def test_open_twice_keeps_single_stream(mock_sd):
    stream_cls, _ = mock_sd
    source = make_source()
    source.open()
    source.open()
    assert stream_cls.call_count == 1


def test_busy_device_raises(mock_sd):
    stream_cls, _ = mock_sd
    stream_cls.side_effect = audio_module.sd.PortAudioError("Device unavailable")
    source = make_source()

    with pytest.raises(DeviceBusy):
        source.open()
    assert not source.is_open


def test_stream_that_fails_to_start_is_closed(mock_sd):
    stream_cls, _ = mock_sd
    stream = stream_cls.return_value
    stream.start.side_effect = audio_module.sd.PortAudioError("Device busy")
    source = make_source()

    with pytest.raises(DeviceBusy):
        source.open()
    stream.close.assert_called_once()
    assert not source.is_open


def test_unsupported_settings_raise_invalid_config(mock_sd):
    _, check = mock_sd
    check.side_effect = ValueError("Invalid sample rate")
    with pytest.raises(InvalidConfig):
        make_source().open()


def test_non_positive_block_size_is_rejected(mock_sd):
    source = MicrophoneSource(AudioSourceConfig(block_size=0))
    with pytest.raises(InvalidConfig):
        source.open()


def test_read_returns_newest_block(mock_sd):
    stream_cls, _ = mock_sd
    source = make_source()
    source.open()
    feed(stream_cls, [1] * 256, [2] * 256, [3] * 256)

    block = source.read_block()

    assert block.sample_rate == 16000
    assert block.samples.shape == (256,)
    assert np.all(block.samples == 3)


def test_read_times_out_with_none(mock_sd):
    source = make_source()
    source.open()
    assert source.read_block() is None


def test_interrupt_wakes_blocked_read(mock_sd):
    source = make_source(read_timeout=5.0)
    source.open()
    errors = []

    def reader():
        try:
            source.read_block()
        except InterruptedRead as exc:
            errors.append(exc)

    thread = threading.Thread(target=reader)
    thread.start()
    source.interrupt()
    thread.join(timeout=1.0)

    assert not thread.is_alive()
    assert len(errors) == 1


def test_full_queue_drops_oldest(mock_sd):
    stream_cls, _ = mock_sd
    source = MicrophoneSource(AudioSourceConfig(block_size=4, queue_size=2, read_timeout=0.1))
    source.open()
    feed(stream_cls, [1] * 4, [2] * 4, [3] * 4)
    assert np.all(source.read_block().samples == 3)


def test_close_stops_and_releases(mock_sd):
    stream_cls, _ = mock_sd
    source = make_source()
    source.open()
    source.close()
    source.close()

    stream = stream_cls.return_value
    stream.stop.assert_called_once()
    stream.close.assert_called_once()
    assert not source.is_open


def test_list_input_devices_filters_outputs():
    devices = [
        {"name": "Speakers", "max_input_channels": 0, "default_samplerate": 48000},
        {"name": "USB Mic", "max_input_channels": 1, "default_samplerate": 44100},
    ]
    with patch.object(audio_module.sd, "query_devices", return_value=devices):
        assert MicrophoneSource.list_input_devices() == [(1, "USB Mic", 44100.0, 1)]
