import os
import logging
from urllib.parse import quote_plus

from flask import Blueprint, Flask, current_app, request, jsonify
from flask_cors import CORS
import requests

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger("gemini-relay")


def parse_timeout(value):
    """Seconds for the upstream call, or None (no timeout) when unset or invalid."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid UPSTREAM_TIMEOUT %r; using no timeout", value)
        return None


# ----------------------
# Configuration
# ----------------------
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-preview-05-20")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
UPSTREAM_TIMEOUT = parse_timeout(os.getenv("UPSTREAM_TIMEOUT"))
FRONTEND_ORIGIN = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")

FALLBACK_TEXT = "Sorry, I couldn't generate a response."


# ----------------------
# Helpers
# ----------------------
def dig(data, *path, default=None):
    """Walk nested dicts/lists along ``path``.

    Returns ``default`` as soon as a key or index is missing or the node has
    the wrong container type. Other errors are not caught.
    """
    node = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or not -len(node) <= step < len(node):
                return default
        elif not isinstance(node, dict) or step not in node:
            return default
        node = node[step]
    return node


def build_upstream_url(api_base: str, model: str) -> str:
    return f"{api_base.rstrip('/')}/models/{model}:generateContent"


def build_payload(prompt: str) -> dict:
    return {"contents": [{"parts": [{"text": prompt}]}]}


def extract_text(result) -> str:
    """Pull the generated text out of a generateContent response.

    A ``null`` body is an error, not a missing field.
    """
    if result is None:
        raise ValueError("Upstream returned an empty (null) response body")
    text = dig(result, "candidates", 0, "content", "parts", 0, "text")
    if not isinstance(text, str) or not text:
        return FALLBACK_TEXT
    return text


def redact(message: str, secret: str) -> str:
    """Mask the credential in a message; HTTP client errors can embed the request URL."""
    if not secret:
        return message
    for form in {secret, quote_plus(secret)}:
        message = message.replace(form, "***")
    return message


# ----------------------
# Endpoints
# ----------------------
relay_bp = Blueprint("relay", __name__)


@relay_bp.route("/", methods=["GET"])
def health_check():
    return jsonify({"status": "relay-running"}), 200


@relay_bp.app_errorhandler(405)
def method_not_allowed(e):
    return jsonify({"error": "Method Not Allowed"}), 405


# No automatic OPTIONS reply; every non-POST method gets the JSON 405.
@relay_bp.route("/api/gemini", methods=["POST"], provide_automatic_options=False)
def gemini_relay():
    # Validate JSON body
    data = request.get_json(silent=True)
    prompt = data.get("prompt") if isinstance(data, dict) else None
    if not isinstance(prompt, str) or not prompt:
        return jsonify({"error": "Prompt is missing"}), 400

    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        logger.error("Server configuration error: API key is missing.")
        return jsonify({"error": "Server configuration error. Contact site admin."}), 500

    url = build_upstream_url(current_app.config["GEMINI_API_BASE"], current_app.config["GEMINI_MODEL"])

    # Forward to Gemini
    try:
        resp = requests.post(
            url,
            params={"key": api_key},
            json=build_payload(prompt),
            headers={"Content-Type": "application/json"},
            timeout=current_app.config.get("UPSTREAM_TIMEOUT"),
        )

        if not 200 <= resp.status_code < 300:
            logger.error("Google API Error (%s): %s", resp.status_code, resp.text)
            return jsonify({"error": f"Google API failed: {resp.reason}"}), resp.status_code

        return jsonify({"text": extract_text(resp.json())}), 200
    except Exception as e:
        message = redact(str(e), api_key)
        logger.exception("Internal Server Error: %s", message)
        return jsonify({"error": f"An internal server error occurred: {message}"}), 500


# ----------------------
# App Setup
# ----------------------
def create_app(config=None) -> Flask:
    app = Flask(__name__)
    app.config.from_mapping(
        GEMINI_API_KEY=GEMINI_API_KEY,
        GEMINI_MODEL=GEMINI_MODEL,
        GEMINI_API_BASE=GEMINI_API_BASE,
        UPSTREAM_TIMEOUT=UPSTREAM_TIMEOUT,
        FRONTEND_ORIGIN=FRONTEND_ORIGIN,
    )
    if config:
        app.config.update(config)

    CORS(app, origins=[app.config["FRONTEND_ORIGIN"]])
    app.register_blueprint(relay_bp)
    return app


app = create_app()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
