import io
import os
import base64
import binascii
from PIL import Image

from pagemonitor.base import PageMonitorBase
from pagemonitor.helpers import ceil_size
from pagemonitor.errors import DevToolsProtocolError, ScreenshotError


class ContentGeometry:
    """
    The rectangle covered by the full scrollable page content, as reported by Page.getLayoutMetrics.
    """

    def __init__(self, x, y, width, height):
        self.x = x
        self.y = y
        self.width = width
        self.height = height

    @classmethod
    def from_layout_metrics(cls, metrics):
        content_size = metrics.get("cssContentSize", None) or metrics.get("contentSize", None)
        if not content_size:
            raise DevToolsProtocolError(f"No content size found in layout metrics: {metrics}")
        try:
            return cls(
                content_size.get("x", 0),
                content_size.get("y", 0),
                content_size["width"],
                content_size["height"],
            )
        except KeyError as e:
            raise DevToolsProtocolError(f"Missing {e} in content size: {content_size}")

    @property
    def size(self):
        # whole pixels, rounded up
        return ceil_size(self.width, self.height)

    @property
    def clip(self):
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height, "scale": 1}

    def __eq__(self, other):
        if not isinstance(other, ContentGeometry):
            return NotImplemented
        return (self.x, self.y, self.width, self.height) == (other.x, other.y, other.width, other.height)

    def __str__(self):
        return f"ContentGeometry(x={self.x}, y={self.y}, width={self.width}, height={self.height})"

    def __repr__(self):
        return str(self)


class Screenshot(PageMonitorBase):
    def __init__(self, url, quality):
        super().__init__()
        self.url = url
        self.quality = quality
        self.geometry = None
        self.base64 = None
        self._blob = None

    @property
    def blob(self):
        if self._blob is None:
            if self.base64 is None:
                raise ScreenshotError("Screenshot not yet taken")
            try:
                self._blob = base64.b64decode(self.base64, validate=True)
            except binascii.Error as e:
                raise ScreenshotError(f"Screenshot data for {self.url} is not valid base64: {e}")
        return self._blob

    @property
    def dimensions(self):
        """
        Width and height of the encoded image
        """
        try:
            with Image.open(io.BytesIO(self.blob)) as image:
                return image.size
        except OSError as e:
            raise ScreenshotError(f"Screenshot for {self.url} is not a readable image: {e}")

    def save(self, filename):
        """
        Writes the screenshot to `filename` (mode 0644), replacing any existing file.

        The image is decoded before the file is opened so a missing or corrupt capture never leaves a file behind.
        """
        blob = self.blob
        if not blob:
            raise ScreenshotError(f"Screenshot for {self.url} is empty")
        fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        with os.fdopen(fd, "wb") as f:
            f.write(blob)
        self.log.info(f"Wrote {len(blob):,} bytes to {filename}")
        return len(blob)

    def __str__(self):
        return f"Screenshot(url={repr(self.url)}, geometry={self.geometry}, quality={self.quality})"

    def __repr__(self):
        return str(self)
