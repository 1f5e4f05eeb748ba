from flask import Flask, jsonify

from docfill.blueprints.documents import documents_bp
from docfill.config import Settings
from docfill.errors import (DocfillError, InvalidDataStructureError, InvalidPathError,
                            ValidationError)
from docfill.log import configure_logging

CLIENT_ERRORS = (InvalidPathError, InvalidDataStructureError, ValidationError)


def create_app(settings=None):
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key
    app.config["DOCFILL"] = settings

    # Register blueprints
    app.register_blueprint(documents_bp)

    @app.errorhandler(DocfillError)
    def docfill_error(e):
        status = 400 if isinstance(e, CLIENT_ERRORS) else 500
        app.logger.warning("%s: %s", e.code, e)
        return jsonify(e.to_dict()), status

    @app.route("/")
    def index():
        return "docfill is running"

    return app


if __name__ == "__main__":
    import os
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)), debug=True)
