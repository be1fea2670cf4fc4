from __future__ import annotations

import pytest
from flask import Flask
from flask.testing import FlaskClient

from cardgen.models.config_models import AppConfig
from cardgen.services.runtime import Runtime, build_runtime
from cardgen.web.app import create_app


@pytest.fixture()
def runtime(app_config: AppConfig) -> Runtime:
    return build_runtime(app_config)


@pytest.fixture()
def app(app_config: AppConfig, runtime: Runtime) -> Flask:
    app = create_app(app_config, runtime)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    return app.test_client()
