from loguru import logger

from blueprints.common.logging import CONSOLE_FORMAT, LOG_FILE, get_logger


def test_get_logger_tags_records_with_component():
    seen = []
    sink_id = logger.add(seen.append, format="{extra[component]}|{message}", level="DEBUG")
    try:
        get_logger("db/store").info("stored")
        logger.info("unbound")
    finally:
        logger.remove(sink_id)

    assert [str(m).strip() for m in seen] == ["db/store|stored", "blueprints|unbound"]


def test_sinks_use_blueprints_log_file_and_show_component():
    assert LOG_FILE.name == "blueprints.log"
    assert "{extra[component]}" in CONSOLE_FORMAT
