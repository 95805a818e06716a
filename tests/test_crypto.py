import hashlib
import json

import pytest

from securerelay.core.config import CryptoConfig
from securerelay.core.crypto import DecryptionError, Envelope, EnvelopeCodec, EnvelopeFormatError
from securerelay.core.crypto.kdf import derive_key, derive_key_scrypt

FAST = CryptoConfig(scrypt_n=1024)


@pytest.fixture
def codec():
    return EnvelopeCodec(FAST)


@pytest.fixture
def legacy_codec():
    return EnvelopeCodec(CryptoConfig(scrypt_n=1024, authenticated=False))


class TestKeyDerivation:
    def test_scrypt_matches_reference_implementation(self):
        expected = hashlib.scrypt(b"s3cr3t", salt=b"salt", n=1024, r=8, p=1, dklen=32)
        assert derive_key_scrypt("s3cr3t", b"salt", n=1024) == expected

    def test_default_parameters_match_node_scrypt_sync(self):
        expected = hashlib.scrypt(b"pw", salt=b"salt", n=16384, r=8, p=1, dklen=32, maxmem=64 * 1024 * 1024)
        assert derive_key("pw", CryptoConfig()) == expected

    def test_deterministic(self):
        assert derive_key("same", FAST) == derive_key("same", FAST)

    def test_str_and_bytes_passcodes_agree(self):
        assert derive_key("pässcode", FAST) == derive_key("pässcode".encode("utf-8"), FAST)

    def test_different_passcodes_differ(self):
        assert derive_key("a", FAST) != derive_key("b", FAST)

    def test_argon2id_key_length(self):
        key = derive_key("pw", CryptoConfig(kdf="argon2id"))
        assert len(key) == 32
        assert key != derive_key("pw", FAST)


class TestEnvelopeCodec:
    @pytest.mark.parametrize("plaintext", [b"", b"x", b"0123456789abcdef", b"\x00\xff" * 1000])
    def test_round_trip(self, codec, plaintext):
        envelope = codec.encrypt(plaintext, "s3cr3t")
        assert codec.decrypt(envelope, "s3cr3t") == plaintext

    def test_legacy_round_trip(self, legacy_codec):
        envelope = legacy_codec.encrypt(b"legacy bytes", "s3cr3t")
        assert envelope.tag is None
        assert legacy_codec.decrypt(envelope, "s3cr3t") == b"legacy bytes"

    def test_authenticated_codec_opens_legacy_envelopes(self, codec, legacy_codec):
        envelope = legacy_codec.encrypt(b"old upload", "s3cr3t")
        assert codec.decrypt(envelope, "s3cr3t") == b"old upload"

    def test_fresh_iv_per_encryption(self, codec):
        first = codec.encrypt(b"same plaintext", "s3cr3t")
        second = codec.encrypt(b"same plaintext", "s3cr3t")
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_ciphertext_is_block_aligned(self, codec):
        for size in (0, 15, 16, 17):
            envelope = codec.encrypt(b"a" * size, "pw")
            assert len(envelope.ciphertext) % 16 == 0
            assert len(envelope.ciphertext) > size

    def test_authenticated_rejects_every_wrong_passcode(self, codec):
        envelope = codec.encrypt(b"top secret", "right")
        for i in range(20):
            with pytest.raises(DecryptionError):
                codec.decrypt(envelope, f"wrong-{i}")

    def test_legacy_rejects_most_wrong_passcodes(self, legacy_codec):
        envelope = legacy_codec.encrypt(b"top secret contents", "right")
        rejected = 0
        for i in range(20):
            try:
                result = legacy_codec.decrypt(envelope, f"wrong-{i}")
            except DecryptionError:
                rejected += 1
            else:
                assert result != b"top secret contents"
        assert rejected >= 15

    def test_tampered_ciphertext_rejected(self, codec):
        envelope = codec.encrypt(b"payload", "pw")
        flipped = bytes([envelope.ciphertext[0] ^ 1]) + envelope.ciphertext[1:]
        with pytest.raises(DecryptionError):
            codec.decrypt(Envelope(envelope.iv, flipped, envelope.tag), "pw")

    def test_stripped_tag_falls_back_to_padding_check(self, codec):
        envelope = codec.encrypt(b"payload", "pw")
        stripped = Envelope(envelope.iv, envelope.ciphertext)
        assert codec.decrypt(stripped, "pw") == b"payload"

    def test_per_call_mode_override(self, codec):
        assert codec.encrypt(b"x", "pw", authenticated=False).tag is None
        assert codec.encrypt(b"x", "pw").tag is not None


class TestEnvelopeFormat:
    def test_wire_format_fields(self, legacy_codec):
        raw = legacy_codec.encrypt(b"hello", "pw").to_bytes()
        data = json.loads(raw)
        assert set(data) == {"iv", "content"}
        assert len(data["iv"]) == 32
        bytes.fromhex(data["content"])

    def test_authenticated_wire_format_has_tag(self, codec):
        data = json.loads(codec.encrypt(b"hello", "pw").to_bytes())
        assert len(data["tag"]) == 64

    def test_parse_stored_bytes(self, codec):
        envelope = codec.encrypt(b"hello", "pw")
        assert Envelope.from_bytes(envelope.to_bytes()) == envelope

    @pytest.mark.parametrize("raw", [
        b"not json",
        b"[]",
        b'{"iv": "00"}',
        b'{"iv": "zz", "content": "00"}',
        b'{"iv": "00112233445566778899aabbccddeeff", "content": ""}',
        b'{"iv": "00112233445566778899aabbccddeeff", "content": "0011"}',
        b'{"iv": "0011", "content": "00112233445566778899aabbccddeeff"}',
        b'{"iv": "00112233445566778899aabbccddeeff", "content": "00112233445566778899aabbccddeeff", "tag": "00"}',
    ])
    def test_malformed_envelopes_rejected(self, raw):
        with pytest.raises(EnvelopeFormatError):
            Envelope.from_bytes(raw)

    def test_format_error_is_a_decryption_error(self):
        assert issubclass(EnvelopeFormatError, DecryptionError)

    def test_repr_hides_content(self, codec):
        envelope = codec.encrypt(b"secret", "pw")
        assert envelope.ciphertext.hex() not in repr(envelope)
