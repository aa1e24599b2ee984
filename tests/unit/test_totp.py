"""
Unit tests for web-session secret derivation and TOTP codes.
"""
import base64

from glance_relay.auth import SECRET_CIPHER, derive_secret, generate_totp

RFC6238_SECRET = base64.b32encode(b"12345678901234567890").decode()


class TestDeriveSecret:

    def test_decodes_to_joined_xor_digits(self):
        """Each byte XOR (index % 33 + 9), joined as decimal text, then base-32."""
        secret = derive_secret()
        padded = secret + "=" * (-len(secret) % 8)
        assert base64.b32decode(padded) == b"5507145853487499592248630329347"

    def test_unpadded_rfc4648_alphabet(self):
        secret = derive_secret()
        assert "=" not in secret
        assert set(secret) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")

    def test_deterministic(self):
        assert derive_secret() == derive_secret(SECRET_CIPHER)

    def test_other_cipher(self):
        assert derive_secret((9,)) != derive_secret()


class TestGenerateTotp:

    def test_rfc6238_vector(self):
        """SHA-1 vector at T=59s, truncated to six digits."""
        assert generate_totp(RFC6238_SECRET, 59_000) == "287082"

    def test_same_window_same_code(self):
        secret = derive_secret()
        assert generate_totp(secret, 1_700_000_010_000) == generate_totp(secret, 1_700_000_019_999)

    def test_six_digits(self):
        code = generate_totp(derive_secret(), 1_700_000_000_000)
        assert len(code) == 6 and code.isdigit()
