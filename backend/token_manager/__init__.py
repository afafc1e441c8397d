"""Token manager: per-site Opal tokens issued through the beam broker."""

__version__ = "0.1.0"
