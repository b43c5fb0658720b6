# lifecycle events Chrome reports through Page.lifecycleEvent
# NOTE: their order is not guaranteed, e.g. networkIdle is sometimes sent before load
lifecycle_events = [
    "init",
    "DOMContentLoaded",
    "firstPaint",
    "firstContentfulPaint",
    "firstImagePaint",
    "firstMeaningfulPaintCandidate",
    "load",
    "networkAlmostIdle",
    "firstMeaningfulPaint",
    "networkIdle",
]


class Subscription:
    """
    Handle for a callback registered with Tab.listen().

    The callback receives every CDP event delivered to the tab's session until cancel() is called.
    """

    def __init__(self, listeners, callback):
        self._listeners = listeners
        self.callback = callback
        self._listeners.append(self)

    @property
    def active(self):
        return self in self._listeners

    def cancel(self):
        try:
            self._listeners.remove(self)
        except ValueError:
            pass

    def __call__(self, event):
        return self.callback(event)
