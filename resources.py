import os
import sys
from pathlib import Path

def _is_frozen():
    """Возвращает True, если приложение запущено из .exe (PyInstaller)."""
    return getattr(sys, 'frozen', False)

def _get_base_dir():
    """Возвращает корень проекта: для исходников или для .exe."""
    if _is_frozen():
        return sys._MEIPASS
    else:
        return os.path.dirname(os.path.abspath(__file__))

def _get_persistent_dir():
    """Возвращает постоянную папку в пользовательском профиле (для БД)."""
    if _is_frozen():
        appdata = os.getenv('APPDATA')
        if appdata:
            return Path(appdata) / "RelayWatch"
        else:
            return Path.home() / ".relaywatch"
    else:
        # В режиме разработки: БД в корне проекта
        return Path(_get_base_dir())

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default

# === Пути ===
# БД хранится в постоянной папке (в .exe) или в корне (в разработке)
DB_PATH = os.environ.get("RW_DB_PATH", str(_get_persistent_dir() / "relaywatch.db"))

# === Modbus ===
# "real": живые устройства, "simulado": случайные значения для отладки без сети
MODBUS_MODE = os.environ.get("RW_MODBUS_MODE", "real").strip().lower()
MODBUS_TIMEOUT = _env_float("RW_MODBUS_TIMEOUT", 2.0)
# мост Modbus->HTTP тоже читает с unit id 1
BRIDGE_UNIT_ID = 1

# === Настройки по умолчанию ===
DEFAULT_TCP = {
    "host": "192.168.1.100",
    "port": "502",
    "unit_id": "1"
}

DEFAULT_DECIMALES = 2
