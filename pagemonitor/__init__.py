__version__ = "0.2.0"
__build_date__ = "2020-10-27"

from .browser import Browser

__all__ = ["Browser"]
