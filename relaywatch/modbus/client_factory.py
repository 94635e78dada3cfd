from __future__ import annotations

import inspect
from typing import Any, Dict

from pymodbus.client import ModbusTcpClient

from resources import DEFAULT_TCP, MODBUS_TIMEOUT


def _unit_kwarg() -> str:
    """
    Имя параметра адреса устройства в вызовах чтения:
    pymodbus < 3.10: `slave`, новее: `device_id`.
    """
    params = inspect.signature(ModbusTcpClient.read_holding_registers).parameters
    return "device_id" if "device_id" in params else "slave"


UNIT_KWARG = _unit_kwarg()


def create_client(settings: Dict[str, Any]) -> ModbusTcpClient:
    """
    settings TCP: {host | ip, port | puerto, timeout?}
    Регистраторы подключены только по IP, RTU здесь не нужен.
    """
    timeout = float(settings.get("timeout", MODBUS_TIMEOUT))
    host = str(settings.get("host") or settings.get("ip") or DEFAULT_TCP["host"]).strip()
    port = int(settings.get("port") or settings.get("puerto") or DEFAULT_TCP["port"])

    # повторы делает планировщик (следующий тик), не клиент
    return ModbusTcpClient(host=host, port=port, timeout=timeout, retries=0)
