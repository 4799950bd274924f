"""Tests for hashlocks, audit roots and participant identity."""

import hashlib

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from paychan_core.crypto import (
    HASHLOCK_SIZE,
    ParticipantIdentity,
    compute_merkle_root,
    hash_secret,
    participant_id_for,
    verify_preimage,
)


class TestHashlock:
    def test_hashlock_is_32_bytes(self) -> None:
        assert len(hash_secret(b"secret")) == HASHLOCK_SIZE == 32

    def test_hashlock_is_sha256(self) -> None:
        assert hash_secret(b"secret") == hashlib.sha256(b"secret").digest()

    def test_verify_correct_preimage(self) -> None:
        lock = hash_secret(b"open sesame")
        assert verify_preimage(lock, b"open sesame")

    def test_verify_wrong_preimage(self) -> None:
        lock = hash_secret(b"open sesame")
        assert not verify_preimage(lock, b"open sesame!")

    def test_verify_against_truncated_lock(self) -> None:
        lock = hash_secret(b"x")
        assert not verify_preimage(lock[:31], b"x")


class TestParticipantIdentity:
    def test_generate(self) -> None:
        identity = ParticipantIdentity.generate()
        assert len(identity.participant_id) == 40
        assert identity.public_key is not None

    def test_id_is_digest_of_der_public_key(self) -> None:
        identity = ParticipantIdentity.generate()
        der = identity.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        assert identity.participant_id == hashlib.sha256(der).hexdigest()[:40]

    def test_id_is_stable_for_same_key(self) -> None:
        private_key = ec.generate_private_key(ec.SECP256R1())
        assert (
            ParticipantIdentity(private_key).participant_id
            == participant_id_for(private_key.public_key())
        )

    def test_unique_identities(self) -> None:
        id1 = ParticipantIdentity.generate()
        id2 = ParticipantIdentity.generate()
        assert id1.participant_id != id2.participant_id


class TestMerkleRoot:
    def test_empty(self) -> None:
        assert compute_merkle_root([]) == "0" * 64

    def test_single_hash(self) -> None:
        h = "a" * 64
        assert compute_merkle_root([h]) == h

    def test_two_hashes(self) -> None:
        root = compute_merkle_root(["a" * 64, "b" * 64])
        assert len(root) == 64
        assert root != "a" * 64

    def test_order_matters(self) -> None:
        assert compute_merkle_root(["a" * 64, "b" * 64]) != compute_merkle_root(["b" * 64, "a" * 64])
