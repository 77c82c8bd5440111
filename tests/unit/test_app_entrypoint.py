"""Unit tests for the console entry point."""

import pytest
import uvicorn
from libs.common.config import get_settings
from services.fulfillment_service.app import main


@pytest.mark.unit
def test_run_serves_app_with_configured_host_and_port(monkeypatch):
    """``fulfillment-service`` hands the app import path and settings to uvicorn."""
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(get_settings(), "PORT", 8123)
    monkeypatch.setattr(get_settings(), "ENVIRONMENT", "production")

    main.run()

    [(app, kwargs)] = calls
    assert app == "services.fulfillment_service.app.main:app"
    assert kwargs["port"] == 8123
    assert kwargs["host"] == get_settings().HOST
    assert kwargs["reload"] is False
