"""Cryptographic utilities — hashlocks, audit roots, participant identity."""

from paychan_core.crypto.hashing import (
    HASHLOCK_SIZE,
    compute_merkle_root,
    hash_secret,
    verify_preimage,
)
from paychan_core.crypto.identity import ParticipantIdentity, participant_id_for

__all__ = [
    "HASHLOCK_SIZE",
    "ParticipantIdentity",
    "compute_merkle_root",
    "hash_secret",
    "participant_id_for",
    "verify_preimage",
]
