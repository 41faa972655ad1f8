from __future__ import annotations

import base64
import json

import pytest

from inboxvault.core.errors import (
    EnvelopeDecodeError,
    EnvelopeSizeError,
    KeyMalformedError,
    KeyMissingError,
    KeyNotFoundError,
    TagVerificationError,
)
from inboxvault.services.crypto import constant_time_equal
from inboxvault.services.crypto.cipher import IV_LENGTH, TAG_LENGTH, CredentialCipher
from inboxvault.services.crypto.envelope import MAX_ENVELOPE_BYTES, EncryptedPayload
from inboxvault.services.crypto.keyring import KeyRing, TokenKey


KEY_A = TokenKey(key_id="k1", material=bytes(range(32)))
KEY_B = TokenKey(key_id="k2", material=bytes(range(32, 64)))


def _cipher(*keys: TokenKey, active: str = "k1") -> CredentialCipher:
    return CredentialCipher(KeyRing(keys or (KEY_A,), active_key_id=active))


def _flip_bit(value: bytes, index: int) -> bytes:
    mutated = bytearray(value)
    mutated[index // 8] ^= 1 << (index % 8)
    return bytes(mutated)


@pytest.mark.parametrize(
    "plaintext",
    ["", "x", "1//0gRefreshToken-abc.def", "ünïcødé ✓ 🔐", "a" * 8000],
)
def test_seal_open_round_trip(plaintext: str) -> None:
    cipher = _cipher()
    assert cipher.open(cipher.seal(plaintext)) == plaintext


def test_envelope_wire_format() -> None:
    cipher = _cipher()
    sealed = cipher.seal("ya29.access-token")
    raw = base64.b64decode(sealed).decode("utf-8")
    data = json.loads(raw)
    assert list(data) == ["keyId", "iv", "ciphertext", "tag"]
    assert data["keyId"] == "k1"
    assert len(base64.b64decode(data["iv"])) == IV_LENGTH
    assert len(base64.b64decode(data["tag"])) == TAG_LENGTH
    assert " " not in raw
    assert "ya29" not in raw


@pytest.mark.parametrize("part", ["ciphertext", "tag", "iv"])
def test_any_single_bit_flip_fails_authentication(part: str) -> None:
    cipher = _cipher()
    payload = EncryptedPayload.decode(cipher.seal("refresh-token-value"))
    original = getattr(payload, part)
    for bit in range(len(original) * 8):
        fields = {
            "key_id": payload.key_id,
            "iv": payload.iv,
            "ciphertext": payload.ciphertext,
            "tag": payload.tag,
        }
        fields[part] = _flip_bit(original, bit)
        tampered = EncryptedPayload(**fields).encode()
        with pytest.raises(TagVerificationError):
            cipher.open(tampered)


def test_wrong_key_fails_authentication() -> None:
    sealed = _cipher(KEY_A).seal("secret")
    impostor = _cipher(TokenKey(key_id="k1", material=bytes(range(64, 96))))
    with pytest.raises(TagVerificationError):
        impostor.open(sealed)


def test_truncated_tag_fails_authentication() -> None:
    cipher = _cipher()
    payload = EncryptedPayload.decode(cipher.seal("secret"))
    truncated = EncryptedPayload(
        key_id=payload.key_id, iv=payload.iv, ciphertext=payload.ciphertext, tag=payload.tag[:12]
    )
    with pytest.raises(TagVerificationError):
        cipher.open(truncated.encode())


def test_authentication_errors_do_not_say_which_part_failed() -> None:
    cipher = _cipher()
    payload = EncryptedPayload.decode(cipher.seal("secret"))
    messages = set()
    for part in ("ciphertext", "tag", "iv"):
        fields = {"key_id": payload.key_id, "iv": payload.iv, "ciphertext": payload.ciphertext, "tag": payload.tag}
        fields[part] = _flip_bit(fields[part], 0)
        with pytest.raises(TagVerificationError) as excinfo:
            cipher.open(EncryptedPayload(**fields).encode())
        messages.add(str(excinfo.value))
    assert len(messages) == 1


def test_nonces_are_unique_across_many_seals() -> None:
    cipher = _cipher()
    nonces = {EncryptedPayload.decode(cipher.seal("same plaintext")).iv for _ in range(5000)}
    assert len(nonces) == 5000


def test_oversized_plaintext_is_refused() -> None:
    cipher = _cipher()
    with pytest.raises(EnvelopeSizeError):
        cipher.seal("a" * 10_000)
    with pytest.raises(EnvelopeSizeError):
        cipher.seal("a" * (MAX_ENVELOPE_BYTES + 1))


def test_sealed_envelopes_stay_within_cap() -> None:
    cipher = _cipher()
    assert len(cipher.seal("a" * 9000)) <= MAX_ENVELOPE_BYTES


@pytest.mark.parametrize(
    "encoded",
    [
        "",
        "%%%not-base64%%%",
        base64.b64encode(b"not json").decode("ascii"),
        base64.b64encode(b"[1, 2, 3]").decode("ascii"),
        base64.b64encode(json.dumps({"keyId": "k1", "iv": "AAAA"}).encode()).decode("ascii"),
        base64.b64encode(
            json.dumps({"keyId": "k1", "iv": "@@", "ciphertext": "AA==", "tag": "AA=="}).encode()
        ).decode("ascii"),
        base64.b64encode(
            json.dumps({"keyId": 7, "iv": "AA==", "ciphertext": "AA==", "tag": "AA=="}).encode()
        ).decode("ascii"),
    ],
)
def test_malformed_envelopes_are_rejected(encoded: str) -> None:
    with pytest.raises(EnvelopeDecodeError):
        _cipher().open(encoded)


def test_oversized_envelope_is_rejected_before_decoding() -> None:
    with pytest.raises(EnvelopeDecodeError):
        _cipher().open("A" * (MAX_ENVELOPE_BYTES + 4))


def test_rotation_keeps_old_envelopes_readable() -> None:
    old = _cipher(KEY_A, active="k1")
    sealed_before = old.seal("refresh-before-rotation")

    rotated = _cipher(KEY_B, KEY_A, active="k2")
    assert rotated.open(sealed_before) == "refresh-before-rotation"
    assert rotated.needs_reseal(sealed_before) is True

    sealed_after = rotated.seal("refresh-after-rotation")
    assert rotated.key_id_of(sealed_after) == "k2"
    assert rotated.needs_reseal(sealed_after) is False


def test_unknown_key_id_is_reported() -> None:
    sealed = _cipher(KEY_B, active="k2").seal("secret")
    with pytest.raises(KeyNotFoundError):
        _cipher(KEY_A, active="k1").open(sealed)


def test_key_ring_rejects_bad_material() -> None:
    with pytest.raises(KeyMalformedError):
        KeyRing([TokenKey(key_id="k1", material=b"short")], active_key_id="k1")
    with pytest.raises(KeyMalformedError):
        KeyRing([KEY_A, TokenKey(key_id="k1", material=bytes(32))], active_key_id="k1")
    with pytest.raises(KeyMissingError):
        KeyRing([KEY_A], active_key_id="k9")
    with pytest.raises(KeyMissingError):
        KeyRing([], active_key_id="k1")


def test_key_ring_repr_hides_material() -> None:
    ring = KeyRing([KEY_A, KEY_B], active_key_id="k2")
    assert repr(ring) == "KeyRing(active='k2', keys=['k1', 'k2'])"
    assert str(KEY_A.material) not in repr(KEY_A)


def test_cipher_from_config_uses_active_key(cipher: CredentialCipher) -> None:
    assert cipher.active_key_id == "k2"
    assert cipher.open(cipher.seal("token")) == "token"


@pytest.mark.parametrize(
    "left, right, expected",
    [
        ("shared-secret", "shared-secret", True),
        ("shared-secret", "shared-secreT", False),
        ("short", "shorter", False),
        ("", "", True),
        ("", "x", False),
        ("ü", "u", False),
    ],
)
def test_constant_time_equal(left: str, right: str, expected: bool) -> None:
    assert constant_time_equal(left, right) is expected
