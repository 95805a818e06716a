"""
Security module - Download tickets and startup hardening.

Security Considerations:
- Use only approved cryptographic algorithms (AES-256, HMAC-SHA256, scrypt/Argon2id)
- Follow fail-closed design principles
- No custom cryptography implementations
"""

from securerelay.security.hardening import (
    CheckResult,
    CryptoSelfTest,
    SecurityCheckResult,
    StartupSecurityValidator,
)
from securerelay.security.tickets import Ticket, TicketSealer

__all__ = [
    "Ticket",
    "TicketSealer",
    "CryptoSelfTest",
    "StartupSecurityValidator",
    "CheckResult",
    "SecurityCheckResult",
]
