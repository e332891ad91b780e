import hashlib
import unittest

from fairdraw.draw.commit_reveal import (
    CommitRevealProtocol,
    begin_commit,
    derive_random,
    generate_secret_seed,
    reveal,
    sha256_hex,
    verify,
)
from fairdraw.errors import CommitVerificationError, ValidationError


class TestCommitReveal(unittest.TestCase):
    def test_commit_is_sha256_of_seed(self):
        seed = "operator-seed-2026-10"
        self.assertEqual(
            begin_commit(seed), hashlib.sha256(seed.encode("ascii")).hexdigest()
        )

    def test_verify_accepts_matching_reveal(self):
        for seed in ("a", "operator-seed", generate_secret_seed()):
            with self.subTest(seed=seed):
                commit = begin_commit(seed)
                self.assertTrue(verify(commit, reveal(seed)))

    def test_verify_rejects_other_values(self):
        commit = begin_commit("abc")
        for other in ("abd", "ABC", " abc", "abc ", "ab"):
            with self.subTest(other=other):
                self.assertFalse(verify(commit, other))

    def test_verify_accepts_upper_case_commit(self):
        commit = begin_commit("seed")
        self.assertTrue(verify(commit.upper(), "seed"))

    def test_verify_rejects_malformed_input(self):
        commit = begin_commit("seed")
        self.assertFalse(verify("not-hex", "seed"))
        self.assertFalse(verify("", "seed"))
        self.assertFalse(verify(commit, ""))
        self.assertFalse(verify(commit, None))
        self.assertFalse(verify(None, "seed"))

    def test_begin_commit_rejects_blank_seed(self):
        with self.assertRaises(ValidationError):
            begin_commit("   ")
        with self.assertRaises(ValidationError):
            begin_commit("sëed")
        with self.assertRaises(TypeError):
            begin_commit(42)

    def test_generated_seeds_are_distinct_hex(self):
        first, second = generate_secret_seed(), generate_secret_seed()
        self.assertNotEqual(first, second)
        self.assertEqual(len(first), 64)
        int(first, 16)

    def test_require_valid_raises_on_mismatch(self):
        protocol = CommitRevealProtocol()
        commit = protocol.begin_commit("seed")
        protocol.require_valid(commit, "seed")
        with self.assertLogs("fairdraw.draw.commit_reveal", level="CRITICAL"):
            with self.assertRaises(CommitVerificationError):
                protocol.require_valid(commit, "other")


class TestDeriveRandom(unittest.TestCase):
    def setUp(self):
        self.seed = "fixed-seed"
        self.commit = begin_commit(self.seed)

    def test_value_in_range_and_reproducible(self):
        for max_value in (1, 2, 3, 7, 10, 1000, 2**40):
            for salt in range(1, 20):
                first = derive_random(self.commit, self.seed, salt, max_value)
                second = derive_random(self.commit, self.seed, salt, max_value)
                self.assertEqual(first, second)
                self.assertGreaterEqual(first, 0)
                self.assertLess(first, max_value)

    def test_single_slot_is_always_zero(self):
        self.assertEqual(derive_random(self.commit, self.seed, 5, 1), 0)

    def test_salts_give_independent_values(self):
        values = {derive_random(self.commit, self.seed, salt, 2**64) for salt in range(50)}
        self.assertEqual(len(values), 50)

    def test_different_reveal_changes_values(self):
        other_seed = "other-seed"
        other_commit = begin_commit(other_seed)
        ours = [derive_random(self.commit, self.seed, s, 2**32) for s in range(10)]
        theirs = [derive_random(other_commit, other_seed, s, 2**32) for s in range(10)]
        self.assertNotEqual(ours, theirs)

    def test_rejects_bad_max_value(self):
        with self.assertRaises(ValidationError):
            derive_random(self.commit, self.seed, 1, 0)
        with self.assertRaises(ValidationError):
            derive_random(self.commit, self.seed, 1, -3)
        with self.assertRaises(TypeError):
            derive_random(self.commit, self.seed, 1, 2.5)
        with self.assertRaises(TypeError):
            derive_random(self.commit, self.seed, 1, True)

    def test_rejection_sampling_with_narrow_digest(self):
        # One hex digit gives 16 buckets; values 10..15 must be re-hashed for max 10.
        protocol = CommitRevealProtocol(digest=lambda payload: sha256_hex(payload)[:1])
        commit = protocol.begin_commit(self.seed)
        seen = set()
        for salt in range(200):
            value = protocol.derive_random(commit, self.seed, salt, 10)
            self.assertTrue(0 <= value < 10)
            seen.add(value)
        self.assertEqual(seen, set(range(10)))

    def test_max_value_beyond_digest_range(self):
        protocol = CommitRevealProtocol(digest=lambda payload: sha256_hex(payload)[:1])
        commit = protocol.begin_commit(self.seed)
        with self.assertRaises(ValidationError):
            protocol.derive_random(commit, self.seed, 1, 17)


if __name__ == "__main__":
    unittest.main()
