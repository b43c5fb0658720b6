import logging
from typer.testing import CliRunner

from pagemonitor.test.helpers import *


def _run_cli(monkeypatch, directory, args, **stub_kwargs):
    import pagemonitor.cli

    browsers = []

    def make_browser(**kwargs):
        browser = StubBrowser(**stub_kwargs, **kwargs)
        browsers.append(browser)
        return browser

    monkeypatch.setattr(pagemonitor.cli, "Browser", make_browser)
    monkeypatch.chdir(directory)
    result = CliRunner().invoke(pagemonitor.cli.app, args)
    return result, browsers


def test_cli(monkeypatch, tmp_path):
    # go-style flags
    result, browsers = _run_cli(
        monkeypatch,
        tmp_path,
        ["-url=https://example.com", "-filename=out.jpg", "--silent"],
        layout_metrics={"x": 0, "y": 0, "width": 500.5, "height": 300.0},
    )
    assert result.exit_code == 0, result.output
    assert len(browsers) == 1
    browser = browsers[0]
    assert browser.started
    assert browser.stopped
    assert browser.requests_for("Page.navigate") == [{"url": "https://example.com"}]
    assert browser.requests_for("Page.captureScreenshot") == [
        {
            "format": "jpeg",
            "quality": 90,
            "clip": {"x": 0, "y": 0, "width": 500.5, "height": 300.0, "scale": 1},
        }
    ]
    output_file = tmp_path / "out.jpg"
    assert output_file.read_bytes() == browser.image

    # existing files are overwritten
    output_file.write_bytes(b"old screenshot")
    result, browsers = _run_cli(monkeypatch, tmp_path, ["-url", "https://example.com", "-filename", "out.jpg"])
    assert result.exit_code == 0, result.output
    assert output_file.read_bytes() == browsers[0].image


def test_cli_defaults(monkeypatch, tmp_path):
    result, browsers = _run_cli(monkeypatch, tmp_path, ["--silent"])
    assert result.exit_code == 0, result.output
    browser = browsers[0]
    assert browser.requests_for("Page.navigate") == [{"url": "https://carto.lausanne.ch/"}]
    assert browser.device.name == "iPad"
    assert browser.wait_event == "networkIdle"
    assert browser.wait_timeout == 60.0
    assert (tmp_path / "screenshot.jpg").read_bytes() == browser.image


def test_cli_options(monkeypatch, tmp_path):
    result, browsers = _run_cli(
        monkeypatch,
        tmp_path,
        [
            "--url",
            "https://example.com/page",
            "-f",
            "shot.jpg",
            "-q",
            "55",
            "-e",
            "load",
            "-t",
            "5",
            "-d",
            "iphone-x",
            "--silent",
        ],
    )
    assert result.exit_code == 0, result.output
    browser = browsers[0]
    assert browser.wait_event == "load"
    assert browser.wait_timeout == 5.0
    assert browser.device.name == "iPhone X"
    assert browser.requests_for("Page.captureScreenshot")[0]["quality"] == 55
    assert (tmp_path / "shot.jpg").is_file()


def test_cli_errors(monkeypatch, tmp_path, caplog):
    caplog.set_level(logging.ERROR)

    # metrics query fails
    result, browsers = _run_cli(
        monkeypatch,
        tmp_path,
        ["-url=https://example.com", "-filename=out.jpg", "--silent"],
        errors={"Page.getLayoutMetrics": "layout unavailable"},
    )
    assert result.exit_code == 1
    assert not (tmp_path / "out.jpg").exists()
    assert "layout unavailable" in caplog.text
    assert browsers[0].stopped
    assert "Page.captureScreenshot" not in browsers[0].methods

    # lifecycle event never fires
    caplog.clear()
    result, browsers = _run_cli(
        monkeypatch,
        tmp_path,
        ["-url=https://example.com", "-filename=out.jpg", "--timeout", "0.2", "--silent"],
        lifecycle_events=["load"],
    )
    assert result.exit_code == 1
    assert not (tmp_path / "out.jpg").exists()
    assert "networkIdle" in caplog.text

    # invalid url never starts the browser
    caplog.clear()
    result, browsers = _run_cli(monkeypatch, tmp_path, ["-url=example.com", "--silent"])
    assert result.exit_code == 1
    assert browsers == []
    assert "Invalid URL" in caplog.text

    # unknown device
    result, browsers = _run_cli(monkeypatch, tmp_path, ["-d", "commodore-64", "--silent"])
    assert result.exit_code == 1
    assert browsers == []

    # output directory doesn't exist
    caplog.clear()
    result, browsers = _run_cli(
        monkeypatch, tmp_path, ["-url=https://example.com", "-filename=missing/out.jpg", "--silent"]
    )
    assert result.exit_code == 1
    assert not (tmp_path / "missing").exists()
    assert caplog.text
