import logging
from datetime import datetime

from charterx.config.config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_configured = set()


def setup_logging(module_name: str) -> None:
    """
    Configure detailed logging for one module: console output shared by all
    charterx loggers plus a timestamped file under LOG_DIR for this module.

    Safe to call repeatedly; handlers are attached once per module.

    Args:
        module_name: The caller's __name__ (e.g. "charterx.services.merger_service")
    """
    if module_name in _configured:
        return
    _configured.add(module_name)

    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger("charterx")
    root.setLevel(Config.LOG_LEVEL)

    if not getattr(root, "_charterx_stream", False):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)
        root._charterx_stream = True

    Config.LOG_DIR.mkdir(exist_ok=True)
    component = module_name.rsplit(".", 1)[-1]
    file_handler = logging.FileHandler(
        Config.LOG_DIR / f'{component}_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
    )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(logging.Filter(module_name))
    root.addHandler(file_handler)
