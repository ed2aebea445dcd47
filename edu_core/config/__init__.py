"""Configuration for the EduHub offline core."""

from .settings import AppSettings, load_settings, DEFAULT_API_BASE_URL

__all__ = ["AppSettings", "load_settings", "DEFAULT_API_BASE_URL"]
