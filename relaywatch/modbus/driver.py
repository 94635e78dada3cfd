from __future__ import annotations

import logging
import random
from typing import Any, Callable, Dict, List, Optional

from pymodbus.exceptions import ModbusException

from relaywatch.errors import ModbusReadError
from resources import BRIDGE_UNIT_ID
from relaywatch.modbus.client_factory import UNIT_KWARG, create_client
from relaywatch.modbus.register_plan import MAX_REGISTERS_PER_READ, ReadRequest, RegisterBlock

log = logging.getLogger(__name__)

ADDR_MIN = 0
ADDR_MAX = 65536  # верхняя граница (исключая)

# симулятор отдаёт значения 0..500, как отладочный режим веб-клиента
SIM_MAX_VALUE = 500


class RegistradorDriver:
    """Чтение holding-регистров (FC03) с одного регистратора."""

    def __init__(self, client, unit_id: int = 1, device_id: Optional[str] = None):
        self.client = client
        self.unit = int(unit_id)
        self.device_id = device_id

    # ---------- обёртки ----------
    def _read_holding_registers(self, address: int, count: int = 1):
        try:
            return self.client.read_holding_registers(address, count=count, **{UNIT_KWARG: self.unit})
        except (ModbusException, OSError) as e:
            raise ModbusReadError(f"Ошибка чтения регистров {address}..{address + count - 1}: {e}",
                                  self.device_id) from e

    # ---------- утилиты чтения ----------
    @staticmethod
    def _ok_regs(rr, need: int) -> Optional[List[int]]:
        if rr is None or getattr(rr, "isError", lambda: True)():
            return None
        regs = getattr(rr, "registers", None)
        return list(regs) if regs is not None and len(regs) >= need else None

    @staticmethod
    def _addr_is_ok(start: int, count: int) -> bool:
        return (start >= ADDR_MIN and 0 < count <= MAX_REGISTERS_PER_READ
                and (start + count - 1) < ADDR_MAX)

    def read_block(self, start: int, count: int) -> List[int]:
        if not self._addr_is_ok(start, count):
            raise ModbusReadError(f"Недопустимый диапазон: начало {start}, количество {count}", self.device_id)
        rr = self._read_holding_registers(start, count=count)
        regs = self._ok_regs(rr, count)
        if regs is None:
            raise ModbusReadError(f"Устройство не вернуло регистры {start}..{start + count - 1}: {rr}",
                                  self.device_id)
        return regs[:count]

    # ---------- Пинг ----------
    def ping(self, address: int = 0) -> bool:
        try:
            self.read_block(address, 1)
            return True
        except ModbusReadError:
            return False


ClientFactory = Callable[[Dict[str, Any]], Any]


def read_request(request: ReadRequest, client_factory: ClientFactory = create_client) -> RegisterBlock:
    """
    Одно соединение на запрос: connect -> read -> close, как мост /api/modbus/test.
    Любая сетевая проблема: ModbusReadError.
    """
    client = client_factory({"host": request.host, "port": request.port})
    try:
        if not client.connect():
            raise ModbusReadError(f"Не удалось подключиться к {request.host}:{request.port}.", request.device_id)
        driver = RegistradorDriver(client, unit_id=request.unit_id, device_id=request.device_id)
        regs = driver.read_block(request.start_address, request.count)
        return RegisterBlock.for_request(request, regs)
    finally:
        try:
            client.close()
        except Exception:
            log.debug("close() failed for %s:%s", request.host, request.port, exc_info=True)


class ModbusFetcher:
    """Боевой источник данных для планировщика."""

    def __init__(self, client_factory: ClientFactory = create_client):
        self.client_factory = client_factory

    def __call__(self, request: ReadRequest) -> RegisterBlock:
        return read_request(request, self.client_factory)


class SimulatedFetcher:
    """Режим «simulado»: случайные значения без сети."""

    def __init__(self, seed: Optional[int] = None, max_value: int = SIM_MAX_VALUE):
        self._rng = random.Random(seed)
        self.max_value = int(max_value)

    def __call__(self, request: ReadRequest) -> RegisterBlock:
        regs = [self._rng.randint(0, self.max_value) for _ in range(request.count)]
        return RegisterBlock.for_request(request, regs)


def check_connection(ip, puerto, indice_inicial, cant_registros,
                     client_factory: ClientFactory = create_client) -> Dict[str, Any]:
    """
    Тест регистратора из формы настройки. Формат ответа как у моста POST /api/modbus/test:
        {ok: True, ip, puerto, indiceInicial, cantRegistros, registros}
        {ok: False, error}
    """
    if not ip or not puerto or not cant_registros:
        return {"ok": False, "error": "Faltan datos (ip, puerto, indiceInicial, cantRegistros)"}
    try:
        start = int(indice_inicial or 0)
        count = int(cant_registros)
        port = int(puerto)
    except (TypeError, ValueError):
        return {"ok": False, "error": "Datos numéricos inválidos (puerto, indiceInicial, cantRegistros)"}

    request = ReadRequest("test", str(ip).strip(), port, BRIDGE_UNIT_ID, start, count)
    try:
        block = read_request(request, client_factory)
    except ModbusReadError as e:
        log.error("Error Modbus: %s", e)
        return {"ok": False, "error": str(e) or "Error en lectura Modbus"}

    return {
        "ok": True,
        "ip": request.host,
        "puerto": port,
        "indiceInicial": start,
        "cantRegistros": count,
        "registros": list(block.registers),
    }
