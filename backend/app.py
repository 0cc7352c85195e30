import logging
import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s: %(message)s",
)

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS
from db import init_db

logger = logging.getLogger(__name__)

static_dir = os.path.join(os.path.dirname(__file__), "..", "frontend", "dist")
app = Flask(__name__, static_folder=static_dir, static_url_path="")
app.secret_key = os.environ.get("SESSION_SECRET", "neonroom-dev-secret")
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(minutes=20)
CORS(app, supports_credentials=True)

init_db()

# Register blueprints
from routes.portfolio import portfolio_bp
from routes.devices import devices_bp, bridge, engine

app.register_blueprint(portfolio_bp)
app.register_blueprint(devices_bp)

if os.environ.get("SIM_AUTOSTART", "1") != "0":
    engine.start()
    if bridge.connected:
        bridge.start_listener()


@app.get("/api/health")
def health():
    return jsonify({
        "status": "ok",
        "simulation": engine.running,
        "rooms": len(engine.rooms),
        "bridge_connected": bridge.connected,
        "bridge_listening": bridge.listening,
    })


@app.get("/")
def serve_frontend():
    return send_from_directory(app.static_folder, "index.html")


@app.errorhandler(404)
def fallback(e):
    return jsonify({"error": "Not found"}), 404


if __name__ == "__main__":
    is_dev = os.environ.get("NEONROOM_ENV") == "dev"
    app.run(host="0.0.0.0", port=5000, debug=is_dev, use_reloader=False)
