"""kwimy: a full-screen Arch Linux install wizard."""

__version__ = "0.1.0"
