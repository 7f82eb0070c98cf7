"""Run log line format and log file handling."""
from __future__ import annotations

import logging
import re
from datetime import datetime

from cloud_provision.logging_config import SUCCESS, configure_logging, log_file_name

LINE_RE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \[(INFO|WARN|ERROR|SUCCESS)\] .+$")


def test_log_file_name_uses_run_start_timestamp():
    assert log_file_name(datetime(2024, 5, 1, 9, 30, 5)) == "provisioning_20240501_093005.log"


def test_lines_are_written_to_file_and_console(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("CLOUD_PROVISION_LOG_LEVEL", raising=False)
    monkeypatch.delenv("CLOUD_PROVISION_DEBUG", raising=False)
    log_file = tmp_path / "logs" / "provisioning_20240501_093005.log"
    assert configure_logging(log_file) == log_file

    logger = logging.getLogger("cloud_provision.test")
    logger.info("starting")
    logger.warning("bucket exists")
    logger.error("create failed")
    logger.log(SUCCESS, "created bucket")
    logger.debug("hidden at INFO")

    lines = log_file.read_text().splitlines()
    assert len(lines) == 4
    assert all(LINE_RE.match(line) for line in lines)
    assert [line.split("] [")[1].split("]")[0] for line in lines] == ["INFO", "WARN", "ERROR", "SUCCESS"]
    assert lines[1].endswith("[WARN] bucket exists")

    stderr = capsys.readouterr().err
    assert "[SUCCESS] created bucket" in stderr
    assert "hidden at INFO" not in stderr


def test_log_file_is_appended_not_truncated(tmp_path):
    log_file = tmp_path / "provisioning_20240501_093005.log"
    log_file.write_text("[2024-05-01 09:00:00] [INFO] earlier line\n")
    configure_logging(log_file)
    logging.getLogger("cloud_provision.test").info("later line")
    lines = log_file.read_text().splitlines()
    assert lines[0].endswith("earlier line")
    assert lines[1].endswith("later line")


def test_third_party_loggers_only_pass_warnings(tmp_path):
    log_file = tmp_path / "run.log"
    configure_logging(log_file)
    logging.getLogger("botocore.credentials").info("Found credentials in environment variables.")
    logging.getLogger("botocore.credentials").warning("credential refresh failed")
    content = log_file.read_text()
    assert "Found credentials" not in content
    assert "credential refresh failed" in content


def test_unwritable_log_location_falls_back_to_console(tmp_path, capsys):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    assert configure_logging(blocker / "run.log") is None
    logging.getLogger("cloud_provision.test").info("still logging")
    stderr = capsys.readouterr().err
    assert "[WARN] Could not open log file" in stderr
    assert "still logging" in stderr


def test_debug_env_enables_debug_lines(tmp_path, monkeypatch):
    monkeypatch.delenv("CLOUD_PROVISION_LOG_LEVEL", raising=False)
    monkeypatch.setenv("CLOUD_PROVISION_DEBUG", "true")
    log_file = tmp_path / "run.log"
    configure_logging(log_file)
    logging.getLogger("cloud_provision.test").debug("detail")
    assert "[DEBUG] detail" in log_file.read_text()
