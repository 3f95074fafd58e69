import logging

from crm_import.core import logging_config


def test_pipeline_level_overrides_package_level(monkeypatch):
    monkeypatch.setattr(logging_config, "_is_configured", False)

    logging_config.configure_logging("warning", pipeline_level="debug")

    assert logging.getLogger("crm_import").level == logging.WARNING
    assert logging.getLogger("crm_import.domain.imports").level == logging.DEBUG
    assert logging.getLogger("botocore").level == logging.WARNING


def test_configuration_happens_once(monkeypatch):
    monkeypatch.setattr(logging_config, "_is_configured", False)
    logging_config.configure_logging("INFO")

    logging_config.configure_logging("ERROR", pipeline_level="ERROR")

    assert logging.getLogger("crm_import.domain.imports").level == logging.INFO
