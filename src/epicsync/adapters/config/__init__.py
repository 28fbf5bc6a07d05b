"""
Configuration Adapters - Load AppConfig from files and the environment.
"""

from .environment import EnvironmentConfigProvider


__all__ = ["EnvironmentConfigProvider"]
