"""
Tests for the reelmark command line.
"""
import json

from reelmark import cli

from conftest import YOUTUBE_ID, YOUTUBE_URL
from test_orchestrator import FakeApi


class FakeClient(FakeApi):
    instances = []

    def __init__(self, base_url, token=None):
        super().__init__()
        self.base_url = base_url
        self.token = token
        FakeClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None


def test_parse_analyze_args():
    args = cli._parse_args(["analyze", YOUTUBE_URL, "--mode", "fast", "--theme", "Timing"])
    assert (args.command, args.url, args.mode, args.theme) == ("analyze", YOUTUBE_URL, "fast", "Timing")
    assert args.base_url == "http://localhost:8000"


def test_analyze_prints_report(monkeypatch, capsys):
    FakeClient.instances.clear()
    monkeypatch.setattr(cli, "HttpAnalysisApiClient", FakeClient)

    code = cli.main(["analyze", YOUTUBE_URL, "--base-url", "http://api.test"])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["videoId"] == YOUTUBE_ID
    assert [t["title"] for t in report["topics"]] == ["What you need", "Feeding schedule"]
    assert report["suggestedQuestions"] == ["Q1?", "Q2?", "Q3?"]
    assert FakeClient.instances[0].base_url == "http://api.test"


def test_analyze_reports_errors(monkeypatch, capsys):
    monkeypatch.setattr(cli, "HttpAnalysisApiClient", FakeClient)
    assert cli.main(["analyze", "https://vimeo.com/1"]) == 1
    assert "error" in json.loads(capsys.readouterr().out)


def test_link_requires_token(capsys):
    assert cli.main(["link", YOUTUBE_ID]) == 2
    assert "--token" in capsys.readouterr().err


def test_link_with_token(monkeypatch, capsys):
    FakeClient.instances.clear()
    monkeypatch.setattr(cli, "HttpAnalysisApiClient", FakeClient)

    code = cli.main(["link", YOUTUBE_ID, "--token", "secret"])

    # the fake cache reports a miss, so nothing is linked
    assert code == 1
    assert FakeClient.instances[0].token == "secret"
    assert "could not be linked" in capsys.readouterr().out
