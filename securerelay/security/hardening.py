"""
Security Hardening Module
=========================

Cryptographic self-tests run before the relay accepts traffic.

This module implements:
- Envelope codec round trips (legacy and authenticated)
- Wrong-passcode rejection in authenticated mode
- Download ticket round trip
- CSPRNG sanity check
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import List, Optional

from securerelay.core.config import CryptoConfig
from securerelay.core.crypto.cbc_codec import EnvelopeCodec
from securerelay.core.crypto.envelope import DecryptionError, Envelope

# Cheap scrypt cost; the self-test checks wiring, not key strength
_SELF_TEST_CRYPTO = CryptoConfig(scrypt_n=1024)


class SecurityCheckResult(Enum):
    """Result of a security check."""
    PASS = auto()
    WARN = auto()
    FAIL = auto()


@dataclass
class CheckResult:
    """Individual security check result."""
    name: str
    result: SecurityCheckResult
    message: str
    details: Optional[str] = None


class CryptoSelfTest:
    """
    Cryptographic self-tests.

    Run on startup to verify the envelope codec and ticket sealing behave.
    """

    @staticmethod
    def test_legacy_envelope(config: CryptoConfig = _SELF_TEST_CRYPTO) -> CheckResult:
        """Unauthenticated AES-256-CBC round trip through the wire format."""
        try:
            codec = EnvelopeCodec(replace(config, authenticated=False))
            plaintext = b"Test plaintext for AES-CBC self-test"

            envelope = codec.encrypt(plaintext, "self-test-passcode")
            restored = Envelope.from_bytes(envelope.to_bytes())

            if codec.decrypt(restored, "self-test-passcode") == plaintext:
                return CheckResult("AES-256-CBC", SecurityCheckResult.PASS, "Self-test passed")
            return CheckResult("AES-256-CBC", SecurityCheckResult.FAIL, "Decryption mismatch")

        except Exception as e:
            return CheckResult("AES-256-CBC", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @staticmethod
    def test_authenticated_envelope(config: CryptoConfig = _SELF_TEST_CRYPTO) -> CheckResult:
        """Encrypt-then-MAC round trip plus rejection of a wrong passcode."""
        try:
            codec = EnvelopeCodec(replace(config, authenticated=True))
            plaintext = b"Test plaintext for CBC-HMAC self-test"

            envelope = codec.encrypt(plaintext, "self-test-passcode")
            if codec.decrypt(envelope, "self-test-passcode") != plaintext:
                return CheckResult("CBC-HMAC-SHA256", SecurityCheckResult.FAIL, "Decryption mismatch")

            try:
                codec.decrypt(envelope, "wrong-passcode")
            except DecryptionError:
                return CheckResult("CBC-HMAC-SHA256", SecurityCheckResult.PASS, "Self-test passed")
            return CheckResult("CBC-HMAC-SHA256", SecurityCheckResult.FAIL, "Wrong passcode accepted")

        except Exception as e:
            return CheckResult("CBC-HMAC-SHA256", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @staticmethod
    def test_ticket_sealing() -> CheckResult:
        """Seal and open a download ticket."""
        try:
            from securerelay.security.tickets import TicketSealer

            sealer = TicketSealer.with_random_secret()
            now = datetime.now(timezone.utc)
            token = sealer.seal("self-test", "self-test-passcode", now + timedelta(minutes=1))
            ticket = sealer.open(token, now)

            if ticket.record_id == "self-test" and ticket.passcode == b"self-test-passcode":
                return CheckResult("AES-256-GCM tickets", SecurityCheckResult.PASS, "Self-test passed")
            return CheckResult("AES-256-GCM tickets", SecurityCheckResult.FAIL, "Ticket mismatch")

        except Exception as e:
            return CheckResult("AES-256-GCM tickets", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @staticmethod
    def test_random_generator() -> CheckResult:
        """Test cryptographic random number generator."""
        try:
            random1 = secrets.token_bytes(32)
            random2 = secrets.token_bytes(32)

            if random1 == random2:
                return CheckResult("CSPRNG", SecurityCheckResult.FAIL, "Random bytes not unique")

            unique_bytes = len(set(random1))
            if unique_bytes < 20:  # At least 20 unique bytes in 32
                return CheckResult("CSPRNG", SecurityCheckResult.WARN, f"Low entropy: {unique_bytes}/32 unique")

            return CheckResult("CSPRNG", SecurityCheckResult.PASS, "Self-test passed")

        except Exception as e:
            return CheckResult("CSPRNG", SecurityCheckResult.FAIL, f"Self-test failed: {e}")

    @classmethod
    def run_all_tests(cls) -> List[CheckResult]:
        """Run all cryptographic self-tests."""
        return [
            cls.test_legacy_envelope(),
            cls.test_authenticated_envelope(),
            cls.test_ticket_sealing(),
            cls.test_random_generator(),
        ]


class StartupSecurityValidator:
    """
    Runs the self-tests and decides whether start-up may continue.

    In strict mode any FAIL blocks start-up; warnings never do.
    """

    def __init__(self, strict_mode: bool = True):
        self._strict = strict_mode
        self._results: List[CheckResult] = []
        self._log = logging.getLogger("securerelay.hardening")

    def run_all_checks(self) -> bool:
        """Run every check. Returns True if start-up may proceed."""
        self._results = CryptoSelfTest.run_all_tests()

        failed = False
        for check in self._results:
            if check.result == SecurityCheckResult.FAIL:
                self._log.error("Self-test %s failed: %s", check.name, check.message)
                failed = True
            elif check.result == SecurityCheckResult.WARN:
                self._log.warning("Self-test %s: %s", check.name, check.message)

        return not (failed and self._strict)

    def get_results(self) -> List[CheckResult]:
        return list(self._results)

    def get_summary(self) -> str:
        passed = sum(1 for r in self._results if r.result == SecurityCheckResult.PASS)
        return f"{passed}/{len(self._results)} security self-tests passed"
