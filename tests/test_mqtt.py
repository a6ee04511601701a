"""Tests for the MQTT publisher, ringer backend and telemetry target."""
import json
from unittest.mock import MagicMock, Mock, patch

import pytest
from paho.mqtt import client as paho

from monitor.actuator import ModeActuator, PermissionDenied
from monitor.decider import DeviceMode, InvalidConfig, ModeCommand
from monitor.telemetry import TelemetryReport
from mqtt.mqtt_client import MQTTConfig, MQTTPublisher
from mqtt.ringer import MQTTRingerBackend, MQTTTelemetryTarget, RingerTopics


@pytest.fixture
def paho_client():
    with patch("mqtt.mqtt_client.mqtt.Client") as client_cls:
        client = MagicMock()
        client.publish.return_value = Mock(rc=0)
        client_cls.return_value = client
        yield client


@pytest.fixture
def publisher(paho_client):
    return MQTTPublisher(MQTTConfig(host="broker", port=1883, status_topic="home/noise"))


def connect(publisher, paho_client):
    publisher._on_connect(paho_client, None, {}, Mock(is_failure=False), None)


def message(topic, payload):
    return Mock(topic=topic, payload=payload.encode("utf-8"))


def test_publish_serialises_json_to_status_topic(publisher, paho_client):
    connect(publisher, paho_client)
    assert publisher.publish({"a": 1})
    topic, data = paho_client.publish.call_args.args
    assert topic == "home/noise"
    assert json.loads(data) == {"a": 1}


def test_publish_to_explicit_topic_without_waiting(publisher, paho_client):
    publisher.publish({"b": 2}, topic="other", wait=0)
    assert paho_client.publish.call_args.args[0] == "other"


def test_subscriptions_are_restored_on_connect(publisher, paho_client):
    publisher.subscribe("phone/policy", lambda payload: None)
    paho_client.subscribe.assert_not_called()

    connect(publisher, paho_client)

    paho_client.subscribe.assert_called_once_with("phone/policy")
    assert publisher.connected


def test_messages_route_to_handler(publisher, paho_client):
    seen = []
    publisher.subscribe("phone/state", seen.append)
    publisher._on_message(paho_client, None, message("phone/state", " vibrate \n"))
    publisher._on_message(paho_client, None, message("unrelated", "x"))
    assert seen == ["vibrate"]


def test_disconnect_clears_connected_flag(publisher, paho_client):
    connect(publisher, paho_client)
    publisher._on_disconnect(paho_client, None, {}, Mock(is_failure=True), None)
    assert not publisher.connected


def make_backend(publisher, **overrides):
    topics = RingerTopics(
        command_topic="phone/ringer/set",
        pulse_topic="phone/haptics/set",
        policy_topic="phone/policy",
        state_topic="phone/state",
        **overrides,
    )
    return MQTTRingerBackend(publisher, topics)


def test_policy_access_follows_retained_topic(publisher, paho_client):
    backend = make_backend(publisher)
    assert not backend.has_policy_access()

    publisher._on_message(paho_client, None, message("phone/policy", "granted"))
    assert backend.has_policy_access()

    publisher._on_message(paho_client, None, message("phone/policy", "denied"))
    assert not backend.has_policy_access()


def test_reported_state_maps_to_device_mode(publisher, paho_client):
    backend = make_backend(publisher)
    assert backend.get_ringer_mode() is None
    publisher._on_message(paho_client, None, message("phone/state", "silent"))
    assert backend.get_ringer_mode() is DeviceMode.SILENCED
    publisher._on_message(paho_client, None, message("phone/state", "loud?"))
    assert backend.get_ringer_mode() is DeviceMode.SILENCED


@pytest.mark.parametrize("silenced_as", ["vibrate", "silent"])
def test_silenced_maps_to_configured_host_mode(publisher, paho_client, silenced_as):
    connect(publisher, paho_client)
    backend = make_backend(publisher, silenced_as=silenced_as, assume_policy_access=True)
    backend.set_ringer_mode(DeviceMode.SILENCED)
    topic, data = paho_client.publish.call_args.args
    assert topic == "phone/ringer/set"
    assert json.loads(data) == {"command": "command_ringer_mode", "mode": silenced_as}


def test_unknown_silenced_mapping_rejected(publisher):
    with pytest.raises(InvalidConfig):
        make_backend(publisher, silenced_as="airplane")


def test_set_without_access_raises(publisher, paho_client):
    backend = make_backend(publisher)
    with pytest.raises(PermissionDenied):
        backend.set_ringer_mode(DeviceMode.NORMAL)
    paho_client.publish.assert_not_called()


def test_actuator_over_mqtt_sends_command_then_pulse(publisher, paho_client):
    connect(publisher, paho_client)
    backend = make_backend(publisher, assume_policy_access=True)
    actuator = ModeActuator(backend, settle_seconds=0)

    result = actuator.apply(ModeCommand.SILENCE)

    assert result.applied
    topics = [c.args[0] for c in paho_client.publish.call_args_list]
    assert topics == ["phone/ringer/set", "phone/haptics/set"]
    pulse = json.loads(paho_client.publish.call_args_list[1].args[1])
    assert pulse == {"command": "vibrate", "pattern": [0, 50, 100, 50]}


def test_telemetry_target_adds_device_id(publisher, paho_client):
    connect(publisher, paho_client)
    target = MQTTTelemetryTarget(publisher, "kitchen-phone")
    target(TelemetryReport(loudness=48.0, mode=DeviceMode.NORMAL, tick=7, timestamp=10.0))
    topic, data = paho_client.publish.call_args.args
    assert topic == "home/noise"
    assert json.loads(data) == {
        "loudness_db": 48.0,
        "mode": "normal",
        "tick": 7,
        "ts": 10,
        "device_id": "kitchen-phone",
    }


def test_undelivered_command_is_not_confirmed(publisher, paho_client):
    connect(publisher, paho_client)
    paho_client.publish.return_value = Mock(rc=paho.MQTT_ERR_NO_CONN)
    backend = make_backend(publisher, assume_policy_access=True)
    actuator = ModeActuator(backend, settle_seconds=0)

    result = actuator.apply(ModeCommand.SILENCE)

    assert not result.applied
    assert actuator.mode is DeviceMode.NORMAL
    topics = [c.args[0] for c in paho_client.publish.call_args_list]
    assert topics == ["phone/ringer/set"]


def test_undelivered_command_raises(publisher, paho_client):
    connect(publisher, paho_client)
    paho_client.publish.return_value = Mock(rc=paho.MQTT_ERR_NO_CONN)
    backend = make_backend(publisher, assume_policy_access=True)
    with pytest.raises(ConnectionError):
        backend.set_ringer_mode(DeviceMode.SILENCED)
