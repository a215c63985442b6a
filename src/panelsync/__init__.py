"""panelsync - state synchronization between a primary performer and remote surfaces."""

__version__ = "0.1.0"
