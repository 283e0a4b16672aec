"""The display context in its own spawned process (headless renderer)."""

import asyncio
import time
from multiprocessing.connection import Client

import pytest

from copilot.errors import OverlayUnavailable
from copilot.overlay import OverlayCoordinator, ProcessTransport, protocol
from copilot.overlay import transport as transport_module


def run(coro):
    return asyncio.run(coro)


def mute_overlay_proc(host, port, renderer_name, log_level):
    """Connects like the real display process, then never answers."""
    conn = Client((host, port), authkey=protocol.AUTHKEY)
    time.sleep(30)
    conn.close()


@pytest.fixture
def transport():
    return ProcessTransport(renderer_name="headless", timeout=10.0)


class TestProcessTransport:

    def test_request_reply_round_trip(self, transport):

        async def scenario():
            try:
                started = await transport.request(protocol.START_OVERLAY, {"width": 400, "height": 600, "margin": 20})
                current = await transport.request(protocol.GET_STATE)
                moved = await transport.request(protocol.UPDATE_POSITION, {"x": 5, "y": 6})
                return started, current, moved, transport.alive
            finally:
                await transport.close()

        started, current, moved, alive = run(scenario())
        assert alive
        assert started["success"] is True
        assert (started["state"]["x"], started["state"]["y"]) == (1500, 20)
        assert current["state"] == started["state"]
        assert (moved["state"]["x"], moved["state"]["y"]) == (5, 6)
        assert not transport.alive

    def test_push_reaches_display(self, transport):

        async def scenario():
            try:
                await transport.request(protocol.START_OVERLAY, {})
                delivered = transport.push(protocol.SETTINGS_UPDATED, {"stealthLevel": "ultra"})
                state = await transport.request(protocol.GET_STATE)
                return delivered, state
            finally:
                await transport.close()

        delivered, state = run(scenario())
        assert delivered is True
        assert state["state"]["stealth_active"] is True

    def test_silent_display_times_out(self, monkeypatch):
        monkeypatch.setattr(transport_module, "run_overlay_proc", mute_overlay_proc)
        transport = ProcessTransport(renderer_name="headless", timeout=2.0)

        async def scenario():
            try:
                with pytest.raises(OverlayUnavailable):
                    await transport.request(protocol.GET_STATE)
                return transport.alive
            finally:
                await transport.close()

        assert run(scenario()) is False

    def test_push_without_process_is_dropped(self, transport):
        assert transport.push(protocol.DISPLAY_RESPONSE, {"text": "x"}) is False


class TestRespawn:

    def test_show_recreates_overlay_after_display_dies(self, transport):
        coordinator = OverlayCoordinator(transport)

        async def scenario():
            try:
                await coordinator.show()
                first_pid = transport._proc.pid
                transport._proc.terminate()
                transport._proc.join(5)

                lost = coordinator.visible
                state = await coordinator.show()
                reported = await transport.request(protocol.GET_STATE)
                return first_pid, transport._proc.pid, lost, state, reported
            finally:
                await coordinator.close()

        first_pid, second_pid, lost, state, reported = run(scenario())
        assert lost is False
        assert second_pid != first_pid
        assert state.visible
        assert reported["state"]["x"] == state.x
