from datetime import timedelta

import pytest

from securerelay.core.config import RelayConfig, UploadConfig
from securerelay.core.errors import (
    ExpiredError,
    InvalidPasscodeError,
    InvalidTicketError,
    NotFoundError,
    NotFoundOnBackend,
    TicketExpiredError,
    UnsupportedFormatError,
    ValidationError,
)
from securerelay.core.relay.service import FileRelay
from securerelay.security.tickets import TicketSealer

PDF = b"%PDF-1.7\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"


@pytest.fixture
def uploaded(relay):
    return relay.upload(PDF, "report.pdf", "s3cr3t")


class TestEndToEnd:
    def test_upload_verify_fetch(self, relay, uploaded, clock):
        clock.advance(hours=1)

        reference = relay.verify(uploaded, "s3cr3t")
        assert reference.filename == "report.pdf"
        assert "s3cr3t" not in reference.reference

        result = relay.fetch_ticket(reference.reference)
        assert result.content == PDF
        assert result.mime_type == "application/pdf"
        assert result.filename == "report.pdf"

    def test_ten_byte_report(self, relay):
        upload_id = relay.upload(b"0123456789", "report.pdf", "s3cr3t")

        result = relay.fetch(upload_id, "s3cr3t")
        assert (result.content, result.mime_type) == (b"0123456789", "application/pdf")
        with pytest.raises(InvalidPasscodeError):
            relay.fetch(upload_id, "wrong")
        with pytest.raises(NotFoundError):
            relay.fetch("nonexistent-id", "s3cr3t")

    def test_direct_fetch(self, relay, uploaded):
        result = relay.fetch(uploaded, "s3cr3t")
        assert result.content == PDF

    def test_wrong_passcode(self, relay, uploaded):
        with pytest.raises(InvalidPasscodeError, match="Invalid passcode"):
            relay.verify(uploaded, "wrong")
        with pytest.raises(InvalidPasscodeError):
            relay.fetch(uploaded, "wrong")

    def test_unknown_id(self, relay):
        with pytest.raises(NotFoundError, match="File not found"):
            relay.verify("no-such-id", "s3cr3t")

    @pytest.mark.parametrize("record_id, passcode", [("", "pw"), ("some-id", ""), ("some-id", None)])
    def test_missing_inputs(self, relay, record_id, passcode):
        with pytest.raises(ValidationError):
            relay.verify(record_id, passcode)


class TestExpiryBoundary:
    def test_retrievable_just_before_expiry(self, relay, uploaded, clock):
        clock.advance(hours=47, minutes=59)
        assert relay.fetch(uploaded, "s3cr3t").content == PDF

    def test_expired_just_after_expiry(self, relay, uploaded, clock):
        clock.advance(hours=48, seconds=1)
        with pytest.raises(ExpiredError, match="File expired"):
            relay.fetch(uploaded, "s3cr3t")

    def test_expired_exactly_at_expiry(self, relay, uploaded, clock):
        clock.advance(hours=48)
        with pytest.raises(ExpiredError):
            relay.verify(uploaded, "s3cr3t")

    def test_expiry_wins_over_wrong_passcode(self, relay, uploaded, clock):
        clock.advance(hours=49)
        with pytest.raises(ExpiredError):
            relay.verify(uploaded, "wrong")

    def test_not_found_wins_over_wrong_passcode(self, relay):
        with pytest.raises(NotFoundError):
            relay.verify("missing", "wrong")


class TestTickets:
    def test_ticket_capped_at_record_expiry(self, relay, uploaded, clock):
        record = relay.records.find_by_id(uploaded)
        clock.advance(hours=47, minutes=55)

        reference = relay.verify(uploaded, "s3cr3t")
        assert reference.expires_at == record.expires_at

    def test_ticket_lifetime(self, relay, uploaded, clock, config):
        reference = relay.verify(uploaded, "s3cr3t")
        assert reference.expires_at == clock.now + timedelta(seconds=config.retention.ticket_ttl_seconds)

    def test_expired_ticket(self, relay, uploaded, clock):
        reference = relay.verify(uploaded, "s3cr3t")
        clock.advance(minutes=11)
        with pytest.raises(TicketExpiredError):
            relay.fetch_ticket(reference.reference)

    def test_forged_ticket(self, relay, uploaded):
        with pytest.raises(InvalidTicketError):
            relay.fetch_ticket("not-a-real-ticket")

    def test_ticket_from_another_server(self, relay, uploaded, clock):
        other = TicketSealer(b"another-secret-entirely-0123456789")
        token = other.seal(uploaded, "s3cr3t", clock.now + timedelta(minutes=5))
        with pytest.raises(InvalidTicketError):
            relay.fetch_ticket(token)

    def test_empty_reference(self, relay):
        with pytest.raises(ValidationError):
            relay.fetch_ticket("")

    def test_ticket_for_purged_file(self, relay, uploaded):
        reference = relay.verify(uploaded, "s3cr3t")
        relay.records.delete_by_id(uploaded)
        with pytest.raises(NotFoundError):
            relay.fetch_ticket(reference.reference)


class TestStorageFaults:
    def test_missing_blob(self, relay, uploaded):
        record = relay.records.find_by_id(uploaded)
        relay.blobs.delete(record.remote_location)
        with pytest.raises(NotFoundOnBackend):
            relay.fetch(uploaded, "s3cr3t")

    def test_format_removed_after_upload(self, config, blobs, records, sealer, clock):
        relay = FileRelay(config, blobs, records, sealer=sealer, clock=clock)
        upload_id = relay.upload(b"hello", "notes.txt", "pw")

        narrowed = RelayConfig(
            paths=config.paths,
            crypto=config.crypto,
            upload=UploadConfig(allowed_formats={".pdf": "application/pdf"}),
        )
        relay = FileRelay(narrowed, blobs, records, sealer=sealer, clock=clock)

        # The passcode still verifies, but the file can no longer be served
        relay.verify(upload_id, "pw")
        with pytest.raises(UnsupportedFormatError):
            relay.fetch(upload_id, "pw")
