from securerelay.security.hardening import (
    CheckResult,
    CryptoSelfTest,
    SecurityCheckResult,
    StartupSecurityValidator,
)


def test_all_self_tests_pass():
    results = CryptoSelfTest.run_all_tests()
    assert len(results) == 4
    assert all(r.result == SecurityCheckResult.PASS for r in results), results


def test_validator_allows_startup():
    validator = StartupSecurityValidator()
    assert validator.run_all_checks()
    assert validator.get_summary() == "4/4 security self-tests passed"


def test_strict_mode_blocks_on_failure(monkeypatch):
    failing = [CheckResult("AES-256-CBC", SecurityCheckResult.FAIL, "broken")]
    monkeypatch.setattr(CryptoSelfTest, "run_all_tests", classmethod(lambda cls: failing))

    assert not StartupSecurityValidator(strict_mode=True).run_all_checks()
    assert StartupSecurityValidator(strict_mode=False).run_all_checks()
