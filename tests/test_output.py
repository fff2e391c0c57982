from __future__ import annotations

from netdiag import output
from netdiag.engine.envelope import Result


def test_flatten_nests_dicts_and_skips_row_lists():
    data = {
        "ip": "192.0.2.1",
        "checks": {"x-frame-options": "PASS"},
        "results": [{"zone": "a", "status": "CLEAN"}],
        "san": ["a.test", "b.test"],
    }
    rows = dict(output._flatten(data))
    assert rows["ip"] == "192.0.2.1"
    assert rows["checks.x-frame-options"] == "PASS"
    assert rows["san"] == ["a.test", "b.test"]
    assert "results" not in rows


def test_fmt_value():
    assert output._fmt_value(None) == "-"
    assert output._fmt_value(True) == "[green]yes[/green]"
    assert output._fmt_value("LISTED") == "[red]LISTED[/red]"
    assert output._fmt_value(["a", "b"]) == "a\nb"


def test_status_line_includes_grade():
    line = output.status_line(Result.success({}, grade="B"), "headers-grade", "example.com")
    assert "headers-grade" in line
    assert "grade [yellow]B[/yellow]" in line


def test_output_renders_success_and_error(capsys):
    output.output(Result.success({"host": "example.com", "hops": [{"url": "https://example.com", "status_code": 200}]}), "trace-redirect", "example.com")
    output.output(Result.error("connection refused"), "tcp", "example.com:1")
    captured = capsys.readouterr()
    assert "example.com" in captured.out
    assert "connection refused" in captured.err


def test_print_json_output(capsys):
    output.print_json_output(Result.timeout("WHOIS timeout"))
    assert '"status": "timeout"' in capsys.readouterr().out


def test_output_prints_bracketed_server_text_literally(capsys):
    banner = "SSH-2.0 [/evil] [red]x"
    output.output(Result.success({"banner": banner}), "banner", "[b]host")
    output.output(Result.error("reset [/oops]"), "banner", "host")
    captured = capsys.readouterr()
    assert "[/evil] [red]x" in captured.out
    assert "[b]host" in captured.out
    assert "reset [/oops]" in captured.err
