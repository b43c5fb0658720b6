import asyncio
import traceback
from contextlib import suppress

from pagemonitor import defaults
from pagemonitor.base import PageMonitorBase
from pagemonitor.events import Subscription
from pagemonitor.devices import get_device
from pagemonitor.helpers import clamp_quality, validate_url
from pagemonitor.screenshot import ContentGeometry, Screenshot
from pagemonitor.errors import BrowserError, NavigationError, PageMonitorError, ScreenshotError, WaitTimeoutError


class Tab(PageMonitorBase):
    def __init__(self, browser):
        super().__init__()
        self.browser = browser
        self.tab_id = None
        self.session_id = None
        self._listeners = []
        self._waiters = set()
        self._incoming_event_queue = asyncio.Queue()
        self._event_handler_task = None
        self._event_handler_started = asyncio.Event()
        self._closed = False

    async def create(self):
        # start event handler
        self._event_handler_task = asyncio.create_task(self.handle_events())
        await self._event_handler_started.wait()
        async with self.browser._tab_lock:
            if self.tab_id is None:
                # Create a new page/tab
                response = await self.browser.request("Target.createTarget", url="about:blank")
                self.tab_id = response["targetId"]
                self.browser.tabs[self.tab_id] = self
            if self.session_id is None:
                response = await self.browser.request("Target.attachToTarget", targetId=self.tab_id, flatten=True)
                self.session_id = response["sessionId"]
                self.browser.event_queues[self.session_id] = self._incoming_event_queue

    def request(self, method, **kwargs):
        if self.session_id is None:
            raise PageMonitorError("You must call create() before making a request")
        return self.browser.request(method, sessionId=self.session_id, **kwargs)

    async def handle_events(self):
        self._event_handler_started.set()
        while not self._closed:
            try:
                event = await self._incoming_event_queue.get()
            except (RuntimeError, asyncio.CancelledError):
                break
            try:
                self.handle_event(event)
            except Exception as e:
                self.log.error(f"Error handling event: {e}")
                self.log.error(traceback.format_exc())

    def handle_event(self, event):
        # listeners may cancel themselves while we iterate
        for listener in list(self._listeners):
            listener(event)

    def listen(self, callback):
        """
        Registers `callback` to receive every CDP event for this tab.

        Returns:
            Subscription: call its cancel() method to stop listening.
        """
        return Subscription(self._listeners, callback)

    async def wait_for(self, event_name, timeout=defaults.wait_timeout):
        """
        Blocks until the page reports the lifecycle event `event_name`.

        Examples of events you can wait for:
            init, DOMContentLoaded, firstPaint,
            firstContentfulPaint, firstImagePaint,
            firstMeaningfulPaintCandidate,
            load, networkAlmostIdle, firstMeaningfulPaint, networkIdle

        Chrome does not guarantee the order of these events (networkIdle is sometimes sent before load),
        so pick the event you actually need.

        Args:
            event_name (str): Name of the Page.lifecycleEvent to wait for.
            timeout (float): Seconds to wait before giving up.

        Returns:
            dict: The matching Page.lifecycleEvent.

        Raises:
            WaitTimeoutError: If the event doesn't arrive within `timeout` seconds.
            asyncio.CancelledError: If the caller is cancelled first.
            BrowserError: If the connection to Chrome is lost first.
        """
        if self.browser._closed:
            raise BrowserError(f"Connection to Chrome was lost before lifecycle event {event_name!r}")
        future = asyncio.get_running_loop().create_future()
        self._waiters.add(future)

        def on_event(event):
            if event.get("method", "") != "Page.lifecycleEvent":
                return
            if event.get("params", {}).get("name", "") == event_name and not future.done():
                future.set_result(event)

        subscription = self.listen(on_event)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            raise WaitTimeoutError(f"Timed out after {timeout:.1f} seconds waiting for lifecycle event {event_name!r}")
        finally:
            subscription.cancel()
            self._waiters.discard(future)

    def fail(self, error):
        """
        Aborts every wait_for() in progress with `error`.
        """
        for future in list(self._waiters):
            if not future.done():
                future.set_exception(error)

    async def enable_lifecycle_events(self):
        await self.request("Page.enable")
        await self.request("Page.setLifecycleEventsEnabled", enabled=True)

    async def emulate(self, device):
        if isinstance(device, str):
            device = get_device(device)
        self.log.debug(f"Emulating device {device.name}")
        await self.request("Emulation.setUserAgentOverride", userAgent=device.user_agent)
        await self.set_device_metrics_override(
            device.width, device.height, device.scale, device.mobile, device.screen_orientation
        )
        await self.request("Emulation.setTouchEmulationEnabled", enabled=device.touch)

    async def emulate_viewport(self, width, height, scale=1.0, landscape=False):
        if landscape:
            orientation = {"type": "landscapePrimary", "angle": 90}
        else:
            orientation = {"type": "portraitPrimary", "angle": 0}
        await self.set_device_metrics_override(width, height, scale, False, orientation)
        await self.request("Emulation.setTouchEmulationEnabled", enabled=False)

    async def set_device_metrics_override(self, width, height, scale, mobile, orientation=None):
        params = {"width": width, "height": height, "deviceScaleFactor": scale, "mobile": mobile}
        if orientation is not None:
            params["screenOrientation"] = orientation
        try:
            await self.request("Emulation.setDeviceMetricsOverride", **params)
        except PageMonitorError as e:
            self.log.error(f"Error overriding device metrics to {width}x{height}: {e}")
            raise

    async def navigate(self, url):
        url = validate_url(url)
        try:
            response = await self.request("Page.navigate", url=url)
        except PageMonitorError as e:
            self.log.error(f"Error navigating to {url}: {e}")
            raise
        error_text = response.get("errorText", "")
        if error_text:
            self.log.error(f"Error navigating to {url}: {error_text}")
            raise NavigationError(f"Error navigating to {url}: {error_text}")
        return response

    async def navigate_and_wait_for(self, url, event_name, timeout=defaults.wait_timeout):
        await self.navigate(url)
        return await self.wait_for(event_name, timeout=timeout)

    async def get_layout_metrics(self):
        try:
            metrics = await self.request("Page.getLayoutMetrics")
            return ContentGeometry.from_layout_metrics(metrics)
        except PageMonitorError as e:
            self.log.error(f"Error getting layout metrics: {e}")
            raise

    async def capture_screenshot(self, clip, quality=defaults.quality):
        try:
            response = await self.request(
                "Page.captureScreenshot", format="jpeg", quality=clamp_quality(quality), clip=clip
            )
        except PageMonitorError as e:
            self.log.error(f"Error capturing screenshot: {e}")
            raise
        try:
            return response["data"]
        except KeyError:
            raise ScreenshotError(f"No image data in screenshot response: {response}")

    async def full_screenshot(
        self,
        url,
        quality=defaults.quality,
        device=defaults.device,
        event_name=defaults.wait_event,
        timeout=defaults.wait_timeout,
    ):
        """
        Captures the entire page content (not just the viewport) of `url` as a JPEG.

        Each step runs only after the previous one succeeded; the first failure is raised as-is.
        """
        screenshot = Screenshot(url, clamp_quality(quality))
        await self.enable_lifecycle_events()
        await self.emulate(device)
        width, height = defaults.viewport
        await self.emulate_viewport(width, height, scale=defaults.viewport_scale)
        await self.navigate_and_wait_for(url, event_name, timeout=timeout)

        geometry = await self.get_layout_metrics()
        # force the viewport to cover the whole page
        width, height = geometry.size
        await self.set_device_metrics_override(width, height, 1, False, {"type": "landscapePrimary", "angle": 0})

        screenshot.base64 = await self.capture_screenshot(geometry.clip, screenshot.quality)
        screenshot.geometry = geometry
        return screenshot

    async def close(self):
        # Remove the tab from the browser's tabs and sessions
        self.browser.tabs.pop(self.tab_id, None)
        self.browser.event_queues.pop(self.session_id, None)
        self._listeners.clear()
        self._closed = True
        try:
            if self.tab_id is not None:
                await self.browser.request("Target.closeTarget", targetId=self.tab_id)
        finally:
            if self._event_handler_task is not None:
                self._event_handler_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._event_handler_task
