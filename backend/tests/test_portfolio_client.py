import requests

from services.portfolio_client import PortfolioClient


class FakeResponse:
    def __init__(self, data, status=200):
        self.data = data
        self.status_code = status

    def json(self):
        return self.data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, document=None, fail=False):
        self.document = document or {}
        self.fail = fail
        self.posted = []

    def get(self, url, timeout=None):
        if self.fail:
            raise requests.ConnectionError("down")
        return FakeResponse(dict(self.document))

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json))
        self.document = json
        return FakeResponse({"ok": True, "created": False})


def test_get_config_returns_section():
    client = PortfolioClient("http://room/", FakeSession({"stool": {"profiles": []}}))
    assert client.get_config("stool") == {"profiles": []}
    assert client.get_config("wallflower") == {}


def test_get_config_swallows_transport_errors():
    client = PortfolioClient("http://room", FakeSession(fail=True))
    assert client.get_config("stool") == {}


def test_save_config_merges_section():
    session = FakeSession({"stool": {"controllers": [], "audioConfig": {"audioMode": "fixed"}}})
    client = PortfolioClient("http://room/", session)
    client.save_config("stool", {"controllers": [{"motorSpeed": 0.2}]})

    url, body = session.posted[0]
    assert url == "http://room/api/portfolio"
    assert body["stool"] == {"controllers": [{"motorSpeed": 0.2}],
                             "audioConfig": {"audioMode": "fixed"}}
