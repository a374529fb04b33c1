"""Tests for the scrubbing log setup."""

import logging
import re

from memsync.logs import configure_logging

ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}[+-]\d{2}:\d{2} \[")


class TestConfigureLogging:
    def test_file_lines_are_timestamped_and_scrubbed(self, tmp_path):
        log_file = tmp_path / "logs" / "daemon.log"
        configure_logging(log_file)
        log = logging.getLogger("memsync.test")
        log.info("using key sm_AbC123 with Bearer xyz987")
        try:
            raise ValueError("api_key=supersecret")
        except ValueError:
            log.exception("failure")

        for handler in logging.getLogger("memsync").handlers:
            handler.flush()
        text = log_file.read_text(encoding="utf-8")
        lines = text.splitlines()
        assert ISO_PREFIX.match(lines[0])
        assert "[INFO]" in lines[0]
        assert "sm_AbC123" not in text
        assert "xyz987" not in text
        assert "supersecret" not in text

    def test_reconfigure_replaces_handlers(self, tmp_path):
        configure_logging(tmp_path / "a.log")
        configure_logging(tmp_path / "b.log")
        handlers = logging.getLogger("memsync").handlers
        assert len(handlers) == 2
