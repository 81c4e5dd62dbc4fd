"""
Peptide Vial Tracker Web Application
JSON API over the dose/vial accounting engine
"""

import logging
import os

from flask import Flask, jsonify

from config import Config
from models import create_database
from vial_api import register_vial_routes


def create_app(database_url=None):
    """Build the Flask app; tables are created on startup"""
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config["SECRET_KEY"] = Config.SECRET_KEY
    app.config["DATABASE_URL"] = database_url or Config.DATABASE_URL

    create_database(app.config["DATABASE_URL"])
    register_vial_routes(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    app.logger.info("Vial tracker ready (database: %s)", app.config["DATABASE_URL"].split("@")[-1])
    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=Config.DEBUG)
