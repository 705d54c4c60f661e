"""Tests for the namespaced logger factory."""

import logging

from ragchat.src.utils.logger import ROOT_LOGGER_NAME, get_logger


class TestGetLogger:
    """Tests for get_logger."""

    def test_module_names_keep_their_place(self):
        """Test loggers already under the namespace are returned as named."""
        assert get_logger("ragchat.src.core.orchestrator").name == "ragchat.src.core.orchestrator"
        assert get_logger(ROOT_LOGGER_NAME).name == ROOT_LOGGER_NAME

    def test_foreign_names_are_nested(self):
        """Test a bare name lands under the namespace root."""
        logger = get_logger("scripts")
        assert logger.name == "ragchat.scripts"
        assert logger.parent is logging.getLogger(ROOT_LOGGER_NAME)

    def test_single_handler_on_root_only(self):
        """Test repeated calls configure one handler, on the namespace root."""
        for _ in range(3):
            module_logger = get_logger("ragchat.tests.sample")

        root = logging.getLogger(ROOT_LOGGER_NAME)
        assert len(root.handlers) == 1
        assert root.propagate is False
        assert module_logger.handlers == []
        assert module_logger.propagate is True

    def test_level_override_is_per_logger(self):
        """Test an explicit level applies to the named logger, not the root."""
        root_level = logging.getLogger(ROOT_LOGGER_NAME).level
        logger = get_logger("ragchat.tests.quiet", level=logging.ERROR)

        assert logger.level == logging.ERROR
        assert logging.getLogger(ROOT_LOGGER_NAME).level == root_level
