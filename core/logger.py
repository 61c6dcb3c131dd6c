import logging
from datetime import datetime

from core.config import Config


def get_logger(name="Autoposter"):
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = logging.DEBUG if Config.DEBUG else getattr(logging, Config.LOG_LEVEL, logging.INFO)
        logger.setLevel(level)
        formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s", "%H:%M:%S")
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        logger.addHandler(sh)
        try:
            Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(Config.LOG_DIR / f"{datetime.now().strftime('%Y-%m-%d')}.log")
            fh.setFormatter(formatter)
            logger.addHandler(fh)
        except OSError as exc:
            logger.warning(f"File logging disabled ({exc}); continuing with stderr only.")
    return logger

if __name__ == "__main__":
    log = get_logger("Test")
    log.info("Logger works ✅")
