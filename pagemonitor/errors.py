class PageMonitorError(Exception):
    pass


class BrowserError(PageMonitorError):
    pass


class DevToolsProtocolError(PageMonitorError):
    pass


class NavigationError(PageMonitorError):
    pass


class WaitTimeoutError(PageMonitorError, TimeoutError):
    pass


class ScreenshotError(PageMonitorError):
    pass


class InvalidURLError(PageMonitorError):
    pass
