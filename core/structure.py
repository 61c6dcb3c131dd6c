# core/structure.py
from pathlib import Path

from core.config import Config
from core.logger import get_logger

log = get_logger("Structure")

def ensure_structure():
    needed = [Config.LOG_DIR]
    if Config.DB_URL.startswith("sqlite:///") and Config.DB_URL != "sqlite:///:memory:":
        needed.append(Path(Config.DB_URL[len("sqlite:///"):]).parent)
    for path in needed:
        path.mkdir(parents=True, exist_ok=True)
        log.info(f"Checked {path}")

if __name__ == "__main__":
    ensure_structure()
