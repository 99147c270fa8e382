"""pierboot: boot and supervise an Urbit pier inside a screen session."""

__version__ = "0.1.0"
