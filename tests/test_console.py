import io
import logging

from rich.console import Console as RichConsole

from cubed_sync.console import Console


def make():
    buf = io.StringIO()
    return Console(RichConsole(file=buf, color_system=None, soft_wrap=True)), buf


def test_channels_prefixes():
    console, buf = make()
    console.success("done")
    console.error("broken [thing]")
    console.info("note")
    lines = buf.getvalue().splitlines()
    assert lines == ["[✓] done", "[x] broken [thing]", "[*] note"]


def test_log_has_timestamp():
    console, buf = make()
    console.log("Uploaded a.sk")
    line = buf.getvalue().strip()
    assert line.startswith("[ ") and line.endswith(" ] Uploaded a.sk")


def test_messages_reach_logging(caplog):
    console, _ = make()
    with caplog.at_level(logging.INFO, logger="cubed_sync.console"):
        console.error("bad")
    assert ("cubed_sync.console", logging.ERROR, "bad") in caplog.record_tuples
