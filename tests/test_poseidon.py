"""Tests for the Poseidon permutation, the sponge and the Fiat-Shamir transcript."""

import pytest

from primitives.field import P
from primitives.poseidon import (
    Domain,
    PoseidonConfig,
    Sponge,
    hash_elements,
    mds_matrix,
    permute,
    round_constants,
)
from primitives.transcript import Transcript
from tests.conftest import SMALL_POSEIDON


class TestPoseidonConfig:

    def test_defaults(self) -> None:
        config = PoseidonConfig()
        assert (config.width, config.full_rounds, config.partial_rounds) == (3, 8, 57)
        assert config.rate == 2
        assert config.total_rounds == 65

    @pytest.mark.parametrize("kwargs", [
        {"width": 1},
        {"full_rounds": 3},
        {"full_rounds": 0},
        {"partial_rounds": -1},
    ])
    def test_invalid_shapes_rejected(self, kwargs) -> None:
        with pytest.raises(ValueError):
            PoseidonConfig(**kwargs)

    def test_full_rounds_surround_partial(self) -> None:
        config = PoseidonConfig(width=3, full_rounds=4, partial_rounds=2)
        assert [config.is_full_round(r) for r in range(6)] == [True, True, False, False, True, True]


class TestPermutation:

    def test_deterministic(self) -> None:
        assert permute([1, 2, 3], SMALL_POSEIDON) == permute([1, 2, 3], SMALL_POSEIDON)

    def test_outputs_in_field(self) -> None:
        out = permute([P - 1, 0, 5], SMALL_POSEIDON)
        assert len(out) == 3
        assert all(0 <= x < P for x in out)

    def test_input_sensitivity(self) -> None:
        assert permute([0, 0, 0], SMALL_POSEIDON) != permute([0, 0, 1], SMALL_POSEIDON)

    def test_wrong_width_rejected(self) -> None:
        with pytest.raises(ValueError):
            permute([1, 2], SMALL_POSEIDON)

    def test_round_constants_depend_on_shape(self) -> None:
        other = PoseidonConfig(width=3, full_rounds=2, partial_rounds=2)
        assert round_constants(SMALL_POSEIDON)[0] != round_constants(other)[0]
        assert len(round_constants(SMALL_POSEIDON)) == SMALL_POSEIDON.total_rounds

    def test_mds_is_cauchy(self) -> None:
        mds = mds_matrix(3)
        for i in range(3):
            for j in range(3):
                assert mds[i][j] * (i + 3 + j) % P == 1


class TestSponge:

    def test_domains_separate(self) -> None:
        a = hash_elements(SMALL_POSEIDON, Domain.TRANSCRIPT, [1, 2, 3])
        b = hash_elements(SMALL_POSEIDON, Domain.DIGEST, [1, 2, 3])
        assert a != b

    def test_matches_manual_duplex(self) -> None:
        """A full block is added into the rate and permuted; squeeze then reads state[0]."""
        sponge = Sponge(SMALL_POSEIDON, Domain.CHALLENGE)
        sponge.absorb_many([4, 5])
        expected = permute([4, 5, int(Domain.CHALLENGE)], SMALL_POSEIDON)
        assert sponge.squeeze() == expected[0]
        # A second squeeze permutes again
        assert sponge.squeeze() == permute(expected, SMALL_POSEIDON)[0]

    def test_partial_block_flushed_on_squeeze(self) -> None:
        sponge = Sponge(SMALL_POSEIDON, Domain.CHALLENGE)
        sponge.absorb(9)
        expected = permute([9, 0, int(Domain.CHALLENGE)], SMALL_POSEIDON)
        assert sponge.squeeze() == expected[0]

    def test_absorb_order_matters(self) -> None:
        a = hash_elements(SMALL_POSEIDON, Domain.DIGEST, [1, 2])
        b = hash_elements(SMALL_POSEIDON, Domain.DIGEST, [2, 1])
        assert a != b


class TestTranscript:

    def _session(self, values):
        transcript = Transcript(SMALL_POSEIDON, seed=42)
        for i, v in enumerate(values):
            transcript.absorb(v, f"value_{i}")
        return transcript

    def test_deterministic(self) -> None:
        """Same absorbs in the same order give the same challenge."""
        a = self._session([1, 2, 3]).squeeze_challenge("c")
        b = self._session([1, 2, 3]).squeeze_challenge("c")
        assert a == b

    def test_sessions_independent(self) -> None:
        """Squeezing from one session leaves another untouched."""
        first = self._session([1, 2, 3])
        second = self._session([1, 2, 3])
        first.squeeze_challenge("c")
        first.squeeze_challenge("d")
        assert second.squeeze_challenge("c") == self._session([1, 2, 3]).squeeze_challenge("c")

    def test_seed_changes_challenge(self) -> None:
        a = Transcript(SMALL_POSEIDON, seed=1)
        b = Transcript(SMALL_POSEIDON, seed=2)
        assert a.squeeze_challenge("c") != b.squeeze_challenge("c")

    def test_consecutive_challenges_differ(self) -> None:
        transcript = self._session([7])
        assert transcript.squeeze_challenge("c0") != transcript.squeeze_challenge("c1")

    def test_log_records_labels(self) -> None:
        transcript = self._session([1, 2])
        transcript.absorb_many([3, 4, 5], "block")
        transcript.squeeze_challenge("c")
        assert transcript.labels() == ("seed", "value_0", "value_1", "block", "c")

    def test_labels_do_not_change_challenge(self) -> None:
        """Only absorbed values enter the sponge; labels go to the log."""
        a = Transcript(SMALL_POSEIDON)
        a.absorb(5, "x")
        b = Transcript(SMALL_POSEIDON)
        b.absorb(5, "y")
        assert a.squeeze_challenge("c") == b.squeeze_challenge("c")
