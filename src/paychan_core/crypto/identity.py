"""Participant identity — ECDSA key pairs and the ids derived from them.

The channel core trusts caller ids as given. A participant can instead be
registered under an id derived from the SHA-256 of its public key, so the
id cannot be chosen freely and two keys never collide on one id.
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)

PARTICIPANT_ID_LENGTH = 40       # Hex chars kept from the key digest


class ParticipantIdentity:
    """ECDSA (SECP256R1) key pair with a derived participant id."""

    def __init__(self, private_key: EllipticCurvePrivateKey) -> None:
        self._public_key = private_key.public_key()
        self._participant_id = participant_id_for(self._public_key)

    @classmethod
    def generate(cls) -> ParticipantIdentity:
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @property
    def participant_id(self) -> str:
        return self._participant_id

    @property
    def public_key(self) -> EllipticCurvePublicKey:
        return self._public_key


def participant_id_for(public_key: EllipticCurvePublicKey) -> str:
    """Hex digest prefix of the DER-encoded public key."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:PARTICIPANT_ID_LENGTH]
