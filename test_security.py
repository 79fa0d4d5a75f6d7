#!/usr/bin/env python3
"""
Tests for passkey authentication helpers
"""
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from capellan import config, security


def make_request(headers=None, host="10.0.0.5"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = host
    request.url.path = "/ask"
    return request


def test_hash_passkey_never_returns_the_raw_value():
    hashed = security.hash_passkey("ave-imperator")
    assert len(hashed) == 8
    assert "ave" not in hashed
    assert hashed == security.hash_passkey("ave-imperator")


def test_client_ip_prefers_proxy_headers():
    assert security.get_client_ip(make_request({"X-Forwarded-For": "1.2.3.4, 10.0.0.1"})) == "1.2.3.4"
    assert security.get_client_ip(make_request({"X-Real-IP": " 5.6.7.8 "})) == "5.6.7.8"
    assert security.get_client_ip(make_request()) == "10.0.0.5"


def test_validate_passkey(monkeypatch):
    monkeypatch.setattr(config, "WEBHOOK_PASSKEY", "correcto")

    assert security.validate_passkey(make_request(), "correcto") is True
    for provided in [None, "", "incorrecto"]:
        with pytest.raises(HTTPException) as exc:
            security.validate_passkey(make_request(), provided)
        assert exc.value.status_code == 401


def test_check_security_config_flags_default_passkey(monkeypatch):
    monkeypatch.setattr(config, "WEBHOOK_PASSKEY", security.DEFAULT_PASSKEY)
    assert security.check_security_config()["passkey_configured"] is False

    monkeypatch.setattr(config, "WEBHOOK_PASSKEY", "un-secreto-largo")
    status = security.check_security_config()
    assert status["passkey_configured"] is True
    assert status["passkey_hash"] == security.hash_passkey("un-secreto-largo")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
