"""Cronsweep - recurring job scheduler driven by a once-a-minute sweep."""

__app_name__ = "cronsweep"
__version__ = "0.1.0"
