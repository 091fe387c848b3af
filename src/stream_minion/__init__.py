"""Stream Minion - online audio resolution and caching."""

__version__ = "0.1.0"
