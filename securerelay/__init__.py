"""
SecureRelay - A Passcode-Gated File Relay
=========================================

Uploads are encrypted under a key derived from a passcode, stored as
opaque envelopes, and purged once their expiry window has passed.

Security Notice:
- No passcodes, keys or plaintext are stored or logged
- Fail-closed design pattern
- All paths are OS-aware
"""

from securerelay.core.config import RelayConfig
from securerelay.core.logging import get_secure_logger

__version__ = "0.1.0"
__author__ = "SecureRelay Team"

__all__ = ["RelayConfig", "get_secure_logger", "__version__"]
