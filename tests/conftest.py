"""Shared pytest fixtures and test doubles."""

import os

# Required settings must exist before threecx_wled.config is imported
os.environ.setdefault("WLED_IP_ADDRESS", "127.0.0.1:9")
os.environ.setdefault("THREECX_WEB_URL", "https://pbx.example.com/webclient/")

from datetime import datetime  # noqa: E402

from threecx_wled.models import AgentEntry, Status  # noqa: E402


class FakeWebSocket:
    """Subscriber that records the JSON text it was sent."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self.closed = False

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError("connection lost")
        self.sent.append(text)

    async def close(self, code=1000):
        self.closed = True


class FakeClock:
    """Settable datetime clock."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 1, 1, 9, 0, 0)

    def __call__(self):
        return self.now


class StubWLED:
    """Stands in for WLEDClient and records the commands it received."""

    def __init__(self, result=True):
        self.result = result
        self.colors = []
        self.calls = []
        self.last_error = None if result else "HTTP 500"

    async def set_color(self, color, brightness=None, transition_ms=None):
        self.colors.append(color)
        return self.result

    async def turn_off(self):
        self.calls.append("off")
        return self.result

    async def set_brightness(self, value):
        self.calls.append(("bri", value))
        return self.result

    async def set_transition(self, value):
        self.calls.append(("transition", value))
        return self.result

    def get_config(self):
        return {"ipAddress": "stub", "brightness": 128, "transition": 1000}


def make_agent(extension, name="Agent", status=Status.AVAILABLE, queues=""):
    return AgentEntry(id=str(extension), extension=str(extension), name=name, status=status, queues=queues)
