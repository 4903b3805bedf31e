"""
dianomeas - provision short-lived Equinix Metal devices and measure their usage.
"""

__version__ = "0.1.0"
