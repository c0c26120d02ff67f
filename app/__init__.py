import os

from flask import Flask, jsonify
from flask_cors import CORS
from .extensions import db
from .routes import register_routes

DEFAULT_CONFIG = {
    "SECRET_KEY": os.environ.get("SECRET_KEY", "dev-secret-change-me"),
    "SQLALCHEMY_DATABASE_URI": os.environ.get("DATABASE_URL", "sqlite:///salon.db"),
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "TOKEN_MAX_AGE": int(os.environ.get("TOKEN_MAX_AGE", 86400)),
    "STRIPE_SECRET_KEY": os.environ.get("STRIPE_SECRET_KEY"),
    "STRIPE_CURRENCY": os.environ.get("STRIPE_CURRENCY", "php"),
    "LOG_LEVEL": os.environ.get("LOG_LEVEL", "INFO"),
    "DEFAULT_TAX_RATE": float(os.environ.get("DEFAULT_TAX_RATE", 0)),
    "COMMISSION_RATE": float(os.environ.get("COMMISSION_RATE", 0.15)),
    "SLOT_MINUTES": int(os.environ.get("SLOT_MINUTES", 30)),
}


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(DEFAULT_CONFIG)

    if isinstance(config_object, dict):
        app.config.from_mapping(config_object)
    elif config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_envvar("APP_SETTINGS", silent=True)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    db.init_app(app)

    # Allow the dashboard frontend to talk to the API
    CORS(app,
         origins=["*"],
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )

    register_routes(app)

    @app.errorhandler(404)
    def not_found(_exc):
        return jsonify({"error": "not_found", "message": "resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_exc):
        return jsonify({"error": "method_not_allowed", "message": "method not allowed"}), 405

    return app
