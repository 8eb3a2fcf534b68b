import logging
import os
from logging.handlers import RotatingFileHandler
from shopsync.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(settings: Settings) -> None:
    """Настройка логирования по LOG_LEVEL / LOG_FILE"""
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())

    formatter = logging.Formatter(LOG_FORMAT)

    # Не дублируем обработчики при повторном вызове
    if not any(getattr(h, "_shopsync", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console._shopsync = True
        root.addHandler(console)

        if settings.LOG_FILE:
            log_dir = os.path.dirname(settings.LOG_FILE)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                settings.LOG_FILE,
                maxBytes=10 * 1024 * 1024,
                backupCount=5
            )
            file_handler.setFormatter(formatter)
            file_handler._shopsync = True
            root.addHandler(file_handler)

    # httpx пишет каждый запрос на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
