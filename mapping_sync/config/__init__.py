"""Configuration module for the mapping synchronizer."""
from .settings import AppConfig, load_settings
from .declared import DeclarationError, load_desired_state, load_mapping_rule

__all__ = ["AppConfig", "load_settings", "DeclarationError", "load_desired_state", "load_mapping_rule"]
