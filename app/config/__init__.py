"""Configuration module for the service lifecycle application."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
