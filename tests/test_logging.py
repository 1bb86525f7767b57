from __future__ import annotations

from loguru import logger

from fleetkeeper.observability.logging import LogConfig, setup_logging, teardown_logging


class TestSetupLogging:
    def test_file_sink_carries_context(self, tmp_path):
        path = tmp_path / "logs" / "fleet.log"
        ids = setup_logging(LogConfig(file=str(path)))
        try:
            logger.bind(component="retention", node="builder-1").info("Scheduling for termination")
        finally:
            teardown_logging(ids)

        text = path.read_text()
        assert "Scheduling for termination" in text
        assert "component=retention node=builder-1" in text

    def test_console_only(self):
        ids = setup_logging(LogConfig(file=None, console=True))
        teardown_logging(ids)
        assert len(ids) == 1
