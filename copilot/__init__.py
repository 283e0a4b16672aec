"""Overlay Copilot: real-time screen/audio assistant with an always-on-top overlay."""

__version__ = "0.1.0"
