"""
Core module - Contains configuration, logging, crypto, storage and the relay pipelines.
"""

from securerelay.core.config import RelayConfig
from securerelay.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["RelayConfig", "get_secure_logger", "SecureLogFilter"]
