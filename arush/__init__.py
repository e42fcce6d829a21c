"""Arush: streaming chat assistant backend with tool calling."""

__version__ = "0.1.0"
