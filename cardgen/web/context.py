from __future__ import annotations

from flask import current_app

from cardgen.services.runtime import Runtime

EXTENSION_KEY = "cardgen"


def get_runtime() -> Runtime:
    """Services of the current app (installed by ``create_app``)."""
    return current_app.extensions[EXTENSION_KEY]
