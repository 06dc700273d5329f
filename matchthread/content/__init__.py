"""Announcement content: assembly from provider data and HTML formatting."""

from .assembler import FixtureContentAssembler

__all__ = ["FixtureContentAssembler"]
