"""Tests for the commit-reveal fair random protocol."""

import hashlib
import hmac
from collections import Counter

import pytest

from fair_dice import (
    CryptoProvider,
    FairRandomProtocol,
    InvalidCounterValue,
    InvalidRange,
    ProtocolState,
    ProtocolStateError,
    verify_commitment,
    verify_result,
)

# chi-square critical value, 5 degrees of freedom, p = 0.0001
CHI2_CRITICAL_DF5 = 25.745


class TestInitiate:
    @pytest.mark.parametrize("bad_range", [0, -1])
    def test_rejects_non_positive_range(self, bad_range):
        with pytest.raises(InvalidRange):
            FairRandomProtocol(bad_range)

    def test_rejects_non_integer_range(self):
        with pytest.raises(InvalidRange):
            FairRandomProtocol(2.5)

    def test_secret_in_range(self, seeded_crypto):
        for range_size in (1, 2, 6, 97):
            for _ in range(50):
                protocol = FairRandomProtocol(range_size, seeded_crypto)
                assert 0 <= protocol.reveal().value < range_size

    def test_default_key_is_256_bits(self):
        protocol = FairRandomProtocol(6)
        assert len(protocol.reveal().key) == 32

    def test_fresh_key_per_instance(self):
        keys = {FairRandomProtocol(6).reveal().key for _ in range(20)}
        assert len(keys) == 20


class TestCommitment:
    def test_commitment_is_lowercase_hmac_sha3(self, seeded_crypto):
        protocol = FairRandomProtocol(6, seeded_crypto)
        commitment = protocol.commitment()
        protocol.compute_result(0)
        revealed = protocol.reveal()

        expected = hmac.new(revealed.key, str(revealed.value).encode("utf-8"), hashlib.sha3_256).hexdigest()
        assert commitment == expected
        assert commitment == commitment.lower()
        assert len(commitment) == 64

    def test_commitment_is_stable(self):
        protocol = FairRandomProtocol(10)
        assert protocol.commitment() == protocol.commitment()

    def test_reveal_reproduces_commitment(self):
        for _ in range(100):
            protocol = FairRandomProtocol(6)
            commitment = protocol.commitment()
            protocol.compute_result(3)
            revealed = protocol.reveal()
            assert verify_commitment(commitment, revealed.key, revealed.value)

    def test_tampered_reveal_fails_verification(self, seeded_crypto):
        protocol = FairRandomProtocol(6, seeded_crypto)
        commitment = protocol.commitment()
        protocol.compute_result(0)
        revealed = protocol.reveal()
        assert not verify_commitment(commitment, revealed.key, (revealed.value + 1) % 6)
        assert not verify_commitment(commitment, bytes(32), revealed.value)

    def test_range_is_not_part_of_commitment(self, scripted_crypto):
        coin = FairRandomProtocol(2, scripted_crypto([1]))
        die = FairRandomProtocol(6, scripted_crypto([1]))
        assert coin.commitment() == die.commitment()
        assert coin.commitment() == CryptoProvider.calculate_hmac(bytes(range(32)), 1)


class TestComputeResult:
    def test_result_matches_recomputation(self, seeded_crypto):
        for range_size in (1, 2, 6, 13):
            for counter in range(range_size):
                protocol = FairRandomProtocol(range_size, seeded_crypto)
                result = protocol.compute_result(counter)
                assert 0 <= result < range_size
                revealed = protocol.reveal()
                assert result == (revealed.value + counter) % range_size
                assert verify_result(revealed, counter, range_size, result)

    @pytest.mark.parametrize("counter", [-1, 6, 100])
    def test_out_of_range_counter_value(self, counter):
        protocol = FairRandomProtocol(6)
        with pytest.raises(InvalidCounterValue):
            protocol.compute_result(counter)
        assert protocol.state is ProtocolState.COMMITTED

    def test_non_integer_counter_value(self):
        protocol = FairRandomProtocol(6)
        with pytest.raises(InvalidCounterValue):
            protocol.compute_result("3")

    def test_second_call_rejected(self):
        protocol = FairRandomProtocol(6)
        protocol.compute_result(1)
        with pytest.raises(ProtocolStateError):
            protocol.compute_result(2)

    def test_no_result_after_reveal(self):
        protocol = FairRandomProtocol(6)
        protocol.reveal()
        with pytest.raises(ProtocolStateError):
            protocol.compute_result(2)

    def test_distribution_is_uniform(self):
        range_size = 6
        runs = 6000
        counts = Counter(FairRandomProtocol(range_size).compute_result(0) for _ in range(runs))
        expected = runs / range_size
        chi2 = sum((counts.get(v, 0) - expected) ** 2 / expected for v in range(range_size))
        assert chi2 < CHI2_CRITICAL_DF5


class TestReveal:
    def test_state_transitions(self):
        protocol = FairRandomProtocol(6)
        assert protocol.state is ProtocolState.COMMITTED
        protocol.compute_result(0)
        assert protocol.state is ProtocolState.RESULT_COMPUTED
        protocol.reveal()
        assert protocol.state is ProtocolState.REVEALED

    def test_reveal_is_idempotent(self):
        protocol = FairRandomProtocol(6)
        protocol.compute_result(4)
        first = protocol.reveal()
        second = protocol.reveal()
        assert first == second
        assert first.key_hex == first.key.hex()

    def test_reveal_without_result(self):
        protocol = FairRandomProtocol(6)
        revealed = protocol.reveal()
        assert protocol.state is ProtocolState.REVEALED
        assert protocol.result is None
        assert verify_commitment(protocol.commitment(), revealed.key, revealed.value)
