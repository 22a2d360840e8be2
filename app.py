import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from config import Config
from errors import ApiError
from logging_config import configure_logging
from routes_admin import admin_bp
from routes_api import api
from routes_auth import auth_bp
from routes_cart import cart_bp
from routes_orders import orders_bp
from sql_db import init_engine

logger = logging.getLogger(__name__)


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(e: ApiError):
        if e.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.path, type(e).__name__, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"message": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_exception(e: Exception):
        # full context in the log, nothing internal in the response
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error"}), 500


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app)
    init_engine(app.config["SQLALCHEMY_DATABASE_URI"])

    app.register_blueprint(auth_bp)
    app.register_blueprint(api)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_bp)
    register_error_handlers(app)
    return app


if __name__ == "__main__":
    create_app().run(debug=True)
