from typing import NamedTuple

from pagemonitor import defaults


class Device(NamedTuple):
    name: str
    user_agent: str
    width: int
    height: int
    scale: float
    landscape: bool
    mobile: bool
    touch: bool

    @property
    def screen_orientation(self):
        if self.landscape:
            return {"type": "landscapePrimary", "angle": 90}
        return {"type": "portraitPrimary", "angle": 0}


ipad_user_agent = (
    "Mozilla/5.0 (iPad; CPU OS 11_0 like Mac OS X) AppleWebKit/604.1.34 (KHTML, like Gecko) "
    "Version/11.0 Mobile/15A5341f Safari/604.1"
)
iphone_user_agent = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 11_0 like Mac OS X) AppleWebKit/604.1.38 (KHTML, like Gecko) "
    "Version/11.0 Mobile/15A372 Safari/604.1"
)
pixel_user_agent = (
    "Mozilla/5.0 (Linux; Android 8.0; Pixel 2 Build/OPD3.170816.012) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/75.0.3765.0 Mobile Safari/537.36"
)


devices = {
    "ipad": Device("iPad", ipad_user_agent, 768, 1024, 2.0, False, True, True),
    "ipad-landscape": Device("iPad landscape", ipad_user_agent, 1024, 768, 2.0, True, True, True),
    "iphone-x": Device("iPhone X", iphone_user_agent, 375, 812, 3.0, False, True, True),
    "pixel-2": Device("Pixel 2", pixel_user_agent, 411, 731, 2.625, False, True, True),
    "desktop": Device("Desktop", defaults.user_agent, 1440, 900, 1.0, True, False, False),
}


def get_device(name):
    """
    Look up an emulation preset by name (case-insensitive).

    Raises:
        KeyError: If no preset with that name exists.
    """
    try:
        return devices[str(name).lower()]
    except KeyError:
        raise KeyError(f"Unknown device {name!r} (available devices: {','.join(devices)})")
