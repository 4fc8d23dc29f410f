import pytest

from storefront.utils.crypto import EncryptionError, decrypt, decrypt_field, encrypt, encrypt_field

KEY = "unit-test-key"


def test_encrypt_is_randomized_and_reversible():
    first, second = encrypt("ada@example.com", KEY), encrypt("ada@example.com", KEY)
    assert first != second
    assert decrypt(first, KEY) == "ada@example.com"
    assert decrypt(second, KEY) == "ada@example.com"


def test_wrong_key_fails():
    token = encrypt("secret", KEY)
    with pytest.raises(EncryptionError):
        decrypt(token, "another-key")


def test_malformed_ciphertext():
    with pytest.raises(EncryptionError):
        decrypt("c2hvcnQ=", KEY)


def test_field_helpers_pass_empty_values_through():
    assert encrypt_field(None, KEY) is None
    assert encrypt_field("", KEY) is None
    assert decrypt_field(None, KEY) is None


def test_decrypt_field_masks_unreadable_values():
    assert decrypt_field(encrypt("x", "other"), KEY) == "***"
