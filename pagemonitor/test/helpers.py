import io
import math
import base64
import pytest
import shutil
import asyncio
import logging
import tempfile
from pathlib import Path
from PIL import Image

from pagemonitor import Browser


log = logging.getLogger("pagemonitor.tests")


chrome_available = any(shutil.which(b) for b in Browser.possible_chrome_binaries)
requires_chrome = pytest.mark.skipif(not chrome_available, reason="Chrome executable not found")


@pytest.fixture
def temp_dir():
    tempdir = Path(tempfile.gettempdir()) / ".pagemonitor-test"
    tempdir.mkdir(parents=True, exist_ok=True)
    yield tempdir
    shutil.rmtree(tempdir, ignore_errors=True)


def make_jpeg(width, height, color=(200, 30, 90)):
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG", quality=90)
    return buf.getvalue()


stub_commands = {
    "Target": {"createTarget", "attachToTarget", "closeTarget"},
    "Page": {"enable", "setLifecycleEventsEnabled", "navigate", "getLayoutMetrics", "captureScreenshot"},
    "Emulation": {"setUserAgentOverride", "setDeviceMetricsOverride", "setTouchEmulationEnabled"},
}


class StubBrowser(Browser):
    """
    A Browser that answers CDP commands in-process instead of talking to Chrome.

    Responses and lifecycle events are delivered asynchronously through Browser.handle_event(),
    the same path real websocket messages take.
    """

    def __init__(
        self,
        *args,
        layout_metrics=None,
        image=None,
        lifecycle_events=("init", "DOMContentLoaded", "load", "networkIdle"),
        errors=None,
        navigate_error_text="",
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        if layout_metrics is None:
            layout_metrics = {"x": 0, "y": 0, "width": 500.5, "height": 300.0}
        self.layout_metrics = layout_metrics
        if image is None:
            width, height = math.ceil(layout_metrics["width"]), math.ceil(layout_metrics["height"])
            image = make_jpeg(width, height)
        self.image = image
        self.lifecycle_events = list(lifecycle_events)
        self.errors = dict(errors or {})
        self.navigate_error_text = navigate_error_text
        self.sent = []
        self.started = False
        self.stopped = False
        self._commands = {k: set(v) for k, v in stub_commands.items()}
        self._deliveries = set()

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True
        self._closed = True

    async def _send_request(self, request):
        self.sent.append(request)
        method = request["method"]
        session_id = request.get("sessionId", None)
        if method in self.errors:
            self._deliver({"id": request["id"], "error": {"code": -32000, "message": self.errors[method]}})
            return
        handler = getattr(self, "_handle_" + method.replace(".", "_"), None)
        result = {} if handler is None else handler(session_id, **request["params"])
        self._deliver({"id": request["id"], "result": result})
        if method == "Page.navigate" and not self.navigate_error_text:
            for i, name in enumerate(self.lifecycle_events):
                self._deliver(
                    {
                        "method": "Page.lifecycleEvent",
                        "sessionId": session_id,
                        "params": {"frameId": "frame-1", "loaderId": "loader-1", "name": name, "timestamp": 1.0},
                    },
                    delay=0.01 * (i + 1),
                )

    def _deliver(self, message, delay=0):
        async def _deliver():
            await asyncio.sleep(delay)
            await self.handle_event(message)

        task = asyncio.create_task(_deliver())
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    def _handle_Target_createTarget(self, session_id, **params):
        return {"targetId": "target-1"}

    def _handle_Target_attachToTarget(self, session_id, **params):
        return {"sessionId": "session-1"}

    def _handle_Target_closeTarget(self, session_id, **params):
        return {"success": True}

    def _handle_Page_navigate(self, session_id, **params):
        result = {"frameId": "frame-1", "loaderId": "loader-1"}
        if self.navigate_error_text:
            result["errorText"] = self.navigate_error_text
        return result

    def _handle_Page_getLayoutMetrics(self, session_id, **params):
        return {
            "layoutViewport": {"pageX": 0, "pageY": 0, "clientWidth": 1024, "clientHeight": 768},
            "cssContentSize": dict(self.layout_metrics),
        }

    def _handle_Page_captureScreenshot(self, session_id, **params):
        return {"data": base64.b64encode(self.image).decode()}

    def requests_for(self, method):
        return [r["params"] for r in self.sent if r["method"] == method]

    @property
    def methods(self):
        return [r["method"] for r in self.sent]
