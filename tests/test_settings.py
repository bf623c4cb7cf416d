import pytest
from pydantic import ValidationError

from config.settings import Settings


def test_otp_digit_bounds_must_be_ordered():
    with pytest.raises(ValidationError) as exc:
        Settings(OTP_MIN_DIGITS=8, OTP_MAX_DIGITS=4, _env_file=None)
    assert "OTP_MIN_DIGITS" in str(exc.value)


def test_otp_digit_range_is_accepted():
    configured = Settings(OTP_MIN_DIGITS=4, OTP_MAX_DIGITS=8, _env_file=None)
    assert (configured.OTP_MIN_DIGITS, configured.OTP_MAX_DIGITS) == (4, 8)


def test_forwarded_for_is_untrusted_by_default():
    assert Settings(_env_file=None).TRUST_FORWARDED_FOR is False
