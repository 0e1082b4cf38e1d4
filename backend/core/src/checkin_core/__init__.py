"""Lane check-in core: identity, reservation, session state machine, completion."""

__version__ = "0.1.0"
