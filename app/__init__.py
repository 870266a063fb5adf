from flask import Flask, jsonify
from config.loader import ConfigStore
from engine.errors import ConfigError
from logging_.engine_logger import setup_loggers
from dotenv import load_dotenv

load_dotenv()


def create_app() -> Flask:
    app = Flask(__name__)
    app.config['JSONIFY_PRETTYPRINT_REGULAR'] = False

    ConfigStore.init()
    setup_loggers(app)

    from .routes import bp as routes_bp
    app.register_blueprint(routes_bp)

    # SSE endpoint
    from .sse import bp as sse_bp
    app.register_blueprint(sse_bp)

    @app.errorhandler(ConfigError)
    def config_error(e: ConfigError):
        return jsonify({"error": str(e)}), 400

    return app
