from __future__ import annotations

import logging

from flask import Flask
from flask_cors import CORS

from tabbit.api.routes import api_bp
from tabbit.config import Config


def create_app(config_object: object = Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    CORS(app)  # share links and the web client are served from other origins

    app.register_blueprint(api_bp)
    return app
