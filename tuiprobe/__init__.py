"""Drive interactive programs in an emulated terminal and snapshot the screen."""

from __future__ import annotations

__version__ = "0.1.0"
