import logging
import os
import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE = "http://127.0.0.1:5000"
TIMEOUT = 5  # seconds


class PortfolioClient:
    """Reads and writes one session's saved room document over HTTP.

    The session cookie is kept on a requests.Session, so consecutive calls
    from one client address the same document.
    """

    def __init__(self, base_url=None, session=None):
        self.base_url = (base_url or os.environ.get("PORTFOLIO_BASE_URL", DEFAULT_BASE)).rstrip("/")
        self.http = session or requests.Session()

    def get_document(self):
        """GET /api/portfolio: the whole document ({} when nothing is saved)."""
        resp = self.http.get(f"{self.base_url}/api/portfolio", timeout=TIMEOUT)
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, dict) else {}

    def get_config(self, section):
        """Return one section of the document (e.g. "wallflower"), or {}."""
        try:
            document = self.get_document()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Portfolio fetch failed: %s", e)
            return {}
        value = document.get(section)
        return value if isinstance(value, dict) else {}

    def save_config(self, section, data):
        """Merge ``data`` into ``section`` and POST the document back.

        Returns the saved document.
        """
        document = self.get_document()
        current = document.get(section)
        merged = dict(current) if isinstance(current, dict) else {}
        merged.update(data)
        document[section] = merged

        resp = self.http.post(f"{self.base_url}/api/portfolio", json=document, timeout=TIMEOUT)
        resp.raise_for_status()
        return resp.json()
