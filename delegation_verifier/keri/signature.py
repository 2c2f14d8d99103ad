"""Signed message verification against a delegate's current key state.

The signature algorithm is an injected primitive: any callable
(message, signature, public_key) -> bool. The default is Ed25519 via
pysodium, matching KERI's baseline 'B'/'D' key derivation codes.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from .exceptions import SignatureInvalidError
from .kel_parser import KEL

log = logging.getLogger(__name__)

# (message, signature, public_key) -> True if valid
SignatureVerifier = Callable[[bytes, bytes, bytes], bool]


def decode_keri_key(key_str: str) -> bytes:
    """Decode a KERI-encoded public key.

    KERI keys use a derivation code prefix followed by base64url-encoded key.
    Example: "BIKKvIT9N5Qg5N8H9A9V5T5D..." (B = Ed25519 non-transferable,
    D = Ed25519 transferable)

    Raises:
        ValueError: If the key is too short or uses an unsupported code.
    """
    if not key_str or len(key_str) < 2:
        raise ValueError("Invalid key format: too short")

    code = key_str[0]
    if code not in ("B", "D"):
        raise ValueError(f"Unsupported key derivation code: {code}")

    key_b64 = key_str[1:]
    padded = key_b64 + "=" * (-len(key_b64) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except Exception as e:
        raise ValueError(f"Failed to decode key: {e}")


def decode_signature(sig: Union[str, bytes]) -> bytes:
    """Decode a signature given as raw bytes or KERI qb64 text.

    Indexed controller signatures start with 0A, 0B, etc.; the prefix is
    stripped before base64url decoding.
    """
    if isinstance(sig, bytes):
        return sig
    if not sig:
        return b""
    if sig.startswith(("0A", "0B", "0C", "0D", "1A", "2A")):
        sig = sig[2:]
    padded = sig + "=" * (-len(sig) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except Exception:
        return b""


def ed25519_verify(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """Verify an Ed25519 signature with libsodium.

    Returns:
        True if signature is valid, False otherwise.
    """
    if len(public_key) != 32 or len(signature) != 64:
        return False

    # Import here so the engine loads without libsodium when a different
    # verifier is injected
    import pysodium

    try:
        pysodium.crypto_sign_verify_detached(signature, message, public_key)
        return True
    except Exception:
        return False


@dataclass
class SignatureCheck:
    """Result of verifying a message against a key state.

    Attributes:
        valid: True if any current signing key verifies the signature.
        signer_aid: AID whose key state was used.
        key_index: Index of the verifying key in the key list, if valid.
        keys_tried: Number of current keys tried.
        errors: Keys that could not be decoded.
    """
    valid: bool
    signer_aid: str
    key_index: Optional[int] = None
    keys_tried: int = 0
    errors: List[str] = field(default_factory=list)

    def raise_for_signature(self) -> None:
        if not self.valid:
            raise SignatureInvalidError(
                f"No current signing key of {self.signer_aid} verifies the signature"
            )


def verify_signed_message(
    kel: KEL,
    message: Union[str, bytes],
    signature: Union[str, bytes],
    verifier: SignatureVerifier = ed25519_verify,
) -> SignatureCheck:
    """Verify a message signature against an identifier's current signing keys.

    Args:
        kel: Signer's loaded KEL; keys come from its latest establishment event.
        message: Signed bytes (str is UTF-8 encoded).
        signature: Raw or qb64 signature.
        verifier: Injected signature primitive.

    Returns:
        SignatureCheck describing which key (if any) verified.
    """
    if isinstance(message, str):
        message = message.encode("utf-8")
    sig_bytes = decode_signature(signature)

    check = SignatureCheck(valid=False, signer_aid=kel.aid)
    for index, key_str in enumerate(kel.signing_keys):
        try:
            public_key = decode_keri_key(key_str)
        except ValueError as e:
            check.errors.append(f"key {index}: {e}")
            continue
        check.keys_tried += 1
        if verifier(message, sig_bytes, public_key):
            check.valid = True
            check.key_index = index
            break

    if not check.valid:
        log.warning(
            f"Signature from {kel.aid[:16]}... not verified by "
            f"{check.keys_tried} current key(s)"
        )
    return check
