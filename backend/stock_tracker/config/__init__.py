"""Configuration package for the stock tracker service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
