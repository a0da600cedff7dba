"""Locate, align and export expression patches from character sprite sheets."""

__version__ = "0.1.0"
