"""tunerproxy: a tuner-limited HDHomeRun-style gateway in front of a Tablo device."""

__version__ = "0.3.0"
