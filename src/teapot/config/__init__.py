"""Configuration and logging setup for teapot."""

from .config_parser import TeapotConfig, build_config, parse_config_file
from .logging_config import init_logging

__all__ = ["TeapotConfig", "build_config", "init_logging", "parse_config_file"]
