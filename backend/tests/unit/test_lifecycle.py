# backend/tests/unit/test_lifecycle.py
import pytest

from flowchat.utils.lifecycle import detect_host_mode


@pytest.mark.asyncio
async def test_detect_host_mode_pins_host_integrated(mocker, host_gateway, fake_sdk):
    """The startup probe pins the mode so later checks make no host calls."""
    mocker.patch("flowchat.utils.lifecycle.get_host_gateway", return_value=host_gateway)

    assert await detect_host_mode() is True
    assert await host_gateway.is_available() is True
    assert fake_sdk.calls == [("ping",)]


@pytest.mark.asyncio
async def test_detect_host_mode_without_sdk_is_demo(mocker, demo_gateway):
    mocker.patch("flowchat.utils.lifecycle.get_host_gateway", return_value=demo_gateway)

    assert await detect_host_mode() is False
    assert await demo_gateway.is_available() is False
