import json

from portfolio_cli import main
from services.portfolio_client import PortfolioClient
from test_portfolio_client import FakeSession


def test_get_prints_section(capsys):
    client = PortfolioClient("http://room", FakeSession({"stool": {"lightsOn": False}}))
    assert main(["get", "stool"], client=client) == 0
    assert json.loads(capsys.readouterr().out) == {"lightsOn": False}


def test_set_merges_file_into_section(tmp_path, capsys):
    session = FakeSession({"wallflower": {"controllers": []}})
    client = PortfolioClient("http://room", session)
    path = tmp_path / "wallflower.json"
    path.write_text(json.dumps({"audioConfig": {"audioMode": "fixed"}}))

    assert main(["set", "wallflower", str(path)], client=client) == 0
    assert session.document["wallflower"] == {"controllers": [],
                                              "audioConfig": {"audioMode": "fixed"}}
    assert json.loads(capsys.readouterr().out)["ok"] is True


def test_set_rejects_non_objects(tmp_path):
    session = FakeSession()
    path = tmp_path / "bad.json"
    path.write_text("[1, 2]")
    client = PortfolioClient("http://room", session)

    assert main(["set", "stool", str(path)], client=client) == 1
    assert main(["set", "stool", str(tmp_path / "missing.json")], client=client) == 1
    assert session.posted == []


def test_get_document_reports_transport_errors():
    client = PortfolioClient("http://room", FakeSession(fail=True))
    assert main(["get"], client=client) == 1
