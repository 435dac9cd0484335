"""
Tests for the session token command line tool.
"""

import json

import pytest

from scripts.session_token_tool import main
from service_session.app.crypto.codec import SessionCodec
from service_session.app.crypto.keys import validate_secret

SECRET = (
    "b6a30e998806a238c4bad45cc720ed55e56e50d9f00fff58552e78a20fe8262df61"
    "42fcfdb0676018bb9767ed560d4a624fb7f3603b4e53c77ec189ae3853bd1"
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep developer environment variables out of the tool."""
    monkeypatch.delenv("ACCESS_SESSION_SECRET", raising=False)
    monkeypatch.delenv("ACCESS_SESSION_DIGEST", raising=False)


def test_generate_secret(capsys):
    """Test that generate-secret prints a usable secret."""
    assert main(["generate-secret"]) == 0

    secret = capsys.readouterr().out.strip()
    assert len(secret) == 128
    validate_secret(secret)


def test_generate_secret_custom_size(capsys):
    """Test generate-secret with a custom byte count."""
    assert main(["generate-secret", "--bytes", "32"]) == 0
    assert len(capsys.readouterr().out.strip()) == 64


def test_encode_then_decode(capsys):
    """Test that an encoded token decodes with the same secret."""
    assert main(["encode", "--secret", SECRET, '{"user_id": 123}']) == 0
    token = capsys.readouterr().out.strip()

    assert main(["decode", "--secret", SECRET, token]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output["status"] == "ok"
    assert output["session"] == {"user_id": 123}
    assert output["timestamp"] is None


def test_encode_is_readable_by_service_codec(capsys):
    """Test that tool output is accepted by the service codec."""
    assert main(["encode", "--secret", SECRET, "--digest", "SHA256", "--expire-after", "3600", '{"a": 1}']) == 0
    token = capsys.readouterr().out.strip()

    codec = SessionCodec(validate_secret(SECRET), digest="SHA256")
    result = codec.decode(token, 3600)
    assert result.is_ok
    assert result.session == {"a": 1}
    assert result.timestamp is not None


def test_encode_without_compression(capsys):
    """Test that --no-compress always produces an uncompressed token."""
    session = json.dumps({"some_key": "value" * 50})

    assert main(["encode", "--secret", SECRET, "--no-compress", session]) == 0
    token = capsys.readouterr().out.strip()
    assert " " not in token


def test_decode_rejects_foreign_token(capsys):
    """Test that a token from another secret decodes as invalid."""
    token = SessionCodec(validate_secret("dd" * 64)).encode({"user_id": 1})

    assert main(["decode", "--secret", SECRET, token]) == 1
    output = json.loads(capsys.readouterr().out)
    assert output["status"] == "invalid"
    assert output["session"] is None


def test_secret_from_environment(capsys, monkeypatch):
    """Test that the secret defaults to ACCESS_SESSION_SECRET."""
    monkeypatch.setenv("ACCESS_SESSION_SECRET", SECRET)

    assert main(["encode", '{"a": 1}']) == 0
    token = capsys.readouterr().out.strip()
    assert SessionCodec(validate_secret(SECRET)).decode(token).session == {"a": 1}


def test_missing_secret(capsys):
    """Test that a missing secret is reported without a traceback."""
    assert main(["encode", '{"a": 1}']) == 2
    assert "required" in capsys.readouterr().err


def test_invalid_json(capsys):
    """Test that an invalid session argument is reported."""
    assert main(["encode", "--secret", SECRET, "{not json"]) == 2
    assert "invalid JSON" in capsys.readouterr().err


def test_non_object_session(capsys):
    """Test that a session that is not an object is refused."""
    assert main(["encode", "--secret", SECRET, "[1, 2]"]) == 2


def test_non_positive_expiry(capsys):
    """Test that a zero expiry is reported as a configuration error."""
    assert main(["encode", "--secret", SECRET, "--expire-after", "0", '{"a": 1}']) == 2
    assert "positive" in capsys.readouterr().err
