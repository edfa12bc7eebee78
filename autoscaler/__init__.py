"""Resource lifecycle and auto-scaling controller for hosted Discord bots."""

__version__ = "1.0.0"
