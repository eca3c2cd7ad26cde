import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from errors import SpotalystError

# Load environment variables from .env file
load_dotenv()


class TruncatingFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, max_length=200):
        super().__init__(fmt, datefmt)
        self.max_length = max_length

    def format(self, record):
        if isinstance(record.msg, str) and len(record.msg) > self.max_length:
            original_length = len(record.msg)
            record.msg = f"{record.msg[:self.max_length]}... [truncated, total length: {original_length} chars]"
        return super().format(record)


def env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def configure_logging(log_file):
    formatter = TruncatingFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s', max_length=200)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if env_flag('DEBUG', False) else logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


configure_logging(os.environ.get('LOG_FILE', 'app.log'))
logger = logging.getLogger('app')

logger.debug('=== Environment Variables ===')
logger.debug(f'SPOTIFY_CLIENT_ID: {os.environ.get("SPOTIFY_CLIENT_ID", "Not set")}')
logger.debug(f'SPOTIFY_CLIENT_SECRET: {"Present" if os.environ.get("SPOTIFY_CLIENT_SECRET") else "Not set"}')
logger.debug(f'GEMINI_API_KEY: {"Present" if os.environ.get("GEMINI_API_KEY") else "Not set"}')
logger.debug(f'SESSION_SECRET: {"Present" if os.environ.get("SESSION_SECRET") else "Not set"}')
logger.debug('==========================')


class Base(DeclarativeBase):
    pass


db = SQLAlchemy(model_class=Base)

# Create the app
app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("SESSION_SECRET", "dev-secret-key")
app.config["DEBUG"] = env_flag("DEBUG", False)
app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)

# Configure the database (also backs the KV cache)
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", "sqlite:///spotalyst.db")
if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }

# Upstream collaborators
app.config["SPOTIFY_CLIENT_ID"] = os.environ.get("SPOTIFY_CLIENT_ID")
app.config["SPOTIFY_CLIENT_SECRET"] = os.environ.get("SPOTIFY_CLIENT_SECRET")
app.config["SPOTIFY_REDIRECT_URI"] = os.environ.get("SPOTIFY_REDIRECT_URI")
app.config["SPOTIFY_TIMEOUT_SECONDS"] = float(os.environ.get("SPOTIFY_TIMEOUT_SECONDS", "10"))
app.config["GEMINI_API_KEY"] = os.environ.get("GEMINI_API_KEY")
app.config["GEMINI_MODEL"] = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
app.config["LLM_TIMEOUT_SECONDS"] = float(os.environ.get("LLM_TIMEOUT_SECONDS", "30"))

# Statistics cache behaviour
app.config["REFRESH_MAX_WORKERS"] = int(os.environ.get("REFRESH_MAX_WORKERS", "8"))
app.config["LISTENING_TIME_DEDUPE"] = env_flag("LISTENING_TIME_DEDUPE", True)

app.config['SESSION_PERMANENT'] = False

db.init_app(app)


@app.errorhandler(SpotalystError)
def handle_spotalyst_error(error):
    logger.warning(f"{error.code}: {error}")
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    from werkzeug.exceptions import HTTPException

    if isinstance(error, HTTPException):
        return jsonify({'error': error.description, 'code': error.name.lower().replace(' ', '_')}), error.code
    logger.error(f"Unhandled error: {error}", exc_info=True)
    return jsonify({'error': 'Internal server error', 'code': 'internal_error'}), 500


# Import routes after app creation to avoid circular imports
with app.app_context():
    # Import models so their tables are created
    import models  # noqa: F401

    db.create_all()

    from routes import register_routes
    register_routes(app)
