"""Build, stage, promote and roll back the container image fleet."""

__version__ = "0.4.0"
