"""Unit tests for core/config.py -- Settings validation."""

import pytest
from pydantic import ValidationError

from core.config import Settings


class TestSettings:
    def test_debug_generates_secret_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_secret_key(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=False, secret_key="")

    def test_short_secret_key_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, secret_key="short")

    def test_low_iteration_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, password_hash_iterations=1000)

    def test_non_positive_lifetime_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, access_token_expire_seconds=0)

    def test_defaults(self) -> None:
        settings = Settings(debug=True, secret_key="k" * 32, _env_file=None)
        assert settings.refresh_token_expire_days == 30
        assert settings.temporary_password_length == 12
        assert settings.password_hash_iterations == 310_000
