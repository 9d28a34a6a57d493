import pytest
from cryptography.fernet import Fernet, InvalidToken

from dreamjournal.app.core.security import (
    decrypt_text,
    encrypt_text,
    generate_encryption_key,
    get_cipher,
    is_encrypted,
    safe_decrypt,
)
from dreamjournal.app.exceptions import ConfigurationError


@pytest.fixture
def cipher():
    return Fernet(Fernet.generate_key())


def test_encrypt_decrypt(cipher):
    token = encrypt_text("I dreamt of a lighthouse", cipher)

    assert token != "I dreamt of a lighthouse"
    assert decrypt_text(token, cipher) == "I dreamt of a lighthouse"


def test_unicode_text(cipher):
    text = "Je rêvais d'un océan 🌊"
    assert decrypt_text(encrypt_text(text, cipher), cipher) == text


def test_configured_key_is_used_by_default():
    assert decrypt_text(encrypt_text("default key")) == "default key"


def test_decrypt_with_wrong_key_fails(cipher):
    token = encrypt_text("secret", cipher)
    with pytest.raises(InvalidToken):
        decrypt_text(token, Fernet(Fernet.generate_key()))


def test_safe_decrypt_returns_input_on_failure(cipher):
    token = encrypt_text("secret", Fernet(Fernet.generate_key()))

    assert safe_decrypt(token, cipher) == token
    assert safe_decrypt("plain text", cipher) == "plain text"


def test_is_encrypted(cipher):
    assert is_encrypted(encrypt_text("x", cipher))
    assert not is_encrypted("")
    assert not is_encrypted("just a plain dream")
    assert not is_encrypted("aGVsbG8=")


def test_passphrase_key_is_derived():
    cipher = get_cipher("a long passphrase that is not a fernet key")
    assert decrypt_text(encrypt_text("x", cipher), cipher) == "x"


def test_missing_key():
    with pytest.raises(ConfigurationError):
        get_cipher("")


def test_generate_encryption_key():
    key = generate_encryption_key()
    cipher = get_cipher(key)
    assert decrypt_text(encrypt_text("x", cipher), cipher) == "x"
