"""Unit tests for referral code generation."""

from questboard.referrals.codes import (
    REFERRAL_CHARSET,
    REFERRAL_CODE_LENGTH,
    generate_referral_code,
    is_well_formed,
    normalize_referral_code,
)


class TestReferralCodes:
    def test_length_and_charset(self):
        for _ in range(50):
            code = generate_referral_code()
            assert len(code) == REFERRAL_CODE_LENGTH
            assert all(c in REFERRAL_CHARSET for c in code)

    def test_codes_are_random(self):
        assert len({generate_referral_code() for _ in range(200)}) > 190

    def test_normalize_is_case_insensitive(self):
        assert normalize_referral_code("  ab12cd34 ") == "AB12CD34"

    def test_well_formed(self):
        assert is_well_formed("ab12cd34")
        assert not is_well_formed("AB12CD3")
        assert not is_well_formed("AB12CD3!")
