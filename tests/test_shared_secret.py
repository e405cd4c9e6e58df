try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import logging

import pytest

from app.core.errors import AuthenticationError, ConfigurationError
from app.services import SharedSecretValidator


def test_matching_secret_passes() -> None:
    SharedSecretValidator("s3cret").validate("s3cret", source="edge")


@pytest.mark.parametrize("presented", [None, "", "wrong", "s3cret "])
def test_missing_or_mismatched_secret_is_forbidden(presented) -> None:
    validator = SharedSecretValidator("s3cret")

    with pytest.raises(AuthenticationError) as excinfo:
        validator.validate(presented)

    assert excinfo.value.code == "forbidden"
    assert excinfo.value.to_response() == {"success": False, "error": "forbidden"}


@pytest.mark.parametrize("configured", [None, ""])
def test_unset_secret_fails_closed(configured, caplog) -> None:
    validator = SharedSecretValidator(configured)
    assert validator.configured is False

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(ConfigurationError):
            validator.validate("anything")

    assert any(record.levelno == logging.CRITICAL for record in caplog.records)
