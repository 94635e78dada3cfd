"""
План чтения Modbus-регистров для алиментадора.
Адреса: 0-based, как их передают в pymodbus (и в мост /api/modbus/test).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from relaywatch.entities import Device
from relaywatch.errors import ModbusReadError
from relaywatch.polling.eligibility import SCHEMA_TARJETA, ResolvedZone

log = logging.getLogger(__name__)

# FC03: не больше 125 holding-регистров за один запрос
MAX_REGISTERS_PER_READ = 125


@dataclass(frozen=True)
class ReadRequest:
    device_id: str
    host: str
    port: int
    unit_id: int
    start_address: int
    count: int

    @property
    def end_address(self) -> int:
        return self.start_address + self.count - 1

    @property
    def target(self) -> Tuple[str, str, int, int]:
        return self.device_id, self.host, self.port, self.unit_id

    def to_bridge_payload(self) -> Dict[str, Any]:
        """Тело запроса POST /api/modbus/test."""
        return {
            "ip": self.host,
            "puerto": self.port,
            "indiceInicial": self.start_address,
            "cantRegistros": self.count,
        }


@dataclass(frozen=True)
class RegisterBlock:
    device_id: str
    start_address: int
    registers: Tuple[int, ...]

    def value_at(self, address: int) -> Optional[int]:
        offset = address - self.start_address
        if 0 <= offset < len(self.registers):
            return self.registers[offset]
        return None

    @classmethod
    def for_request(cls, request: ReadRequest, registers: Sequence[int]) -> "RegisterBlock":
        if len(registers) < request.count:
            raise ModbusReadError(
                f"Устройство вернуло {len(registers)} регистров вместо {request.count}",
                request.device_id,
            )
        regs = tuple(int(r) & 0xFFFF for r in registers[:request.count])
        return cls(request.device_id, request.start_address, regs)


# ---- Склейка 32-битного значения из двух 16-бит слов (HI+LO) ----
def u32_from_words(hi: int, lo: int) -> int:
    return ((hi & 0xFFFF) << 16) | (lo & 0xFFFF)


def registers_from_bridge_response(resp: Mapping[str, Any]) -> List[int]:
    """
    Ответ моста: {ok: true, registros: [...]} или {ok: false, error: "..."}.
    Также принимает сырой результат клиента {data: [...]}.
    """
    if "data" in resp and "ok" not in resp:
        return [int(v) for v in resp["data"]]
    if not resp.get("ok"):
        raise ModbusReadError(resp.get("error") or "Error en lectura Modbus")
    return [int(v) for v in resp.get("registros") or []]


def _chunks(addresses: Sequence[int]) -> List[Tuple[int, int]]:
    """Сортированные адреса -> [(start, count)], каждый кусок не длиннее лимита FC03."""
    spans: List[Tuple[int, int]] = []
    for addr in addresses:
        if spans and addr - spans[-1][0] < MAX_REGISTERS_PER_READ:
            start, _ = spans[-1]
            spans[-1] = (start, addr - start + 1)
        else:
            spans.append((addr, 1))
    return spans


def zone_spans(zone: ResolvedZone, device: Device) -> List[Tuple[int, int]]:
    if zone.schema == SCHEMA_TARJETA:
        count = max(1, device.cantidad_registros)
        start = device.indice_inicial
        return [
            (start + off, min(MAX_REGISTERS_PER_READ, count - off))
            for off in range(0, count, MAX_REGISTERS_PER_READ)
        ]
    addresses = sorted({b.address for b in zone.boxes if b.pollable and b.address is not None})
    return _chunks(addresses)


def coalesce_requests(requests: Iterable[ReadRequest]) -> List[ReadRequest]:
    """Склеивает перекрывающиеся/соседние диапазоны одного устройства."""
    by_target: Dict[Tuple[str, str, int, int], List[ReadRequest]] = {}
    for rq in requests:
        by_target.setdefault(rq.target, []).append(rq)

    out: List[ReadRequest] = []
    for group in by_target.values():
        group.sort(key=lambda r: r.start_address)
        cur = group[0]
        for rq in group[1:]:
            end = max(cur.end_address, rq.end_address)
            merged_count = end - cur.start_address + 1
            if rq.start_address <= cur.end_address + 1 and merged_count <= MAX_REGISTERS_PER_READ:
                cur = ReadRequest(cur.device_id, cur.host, cur.port, cur.unit_id, cur.start_address, merged_count)
            else:
                out.append(cur)
                cur = rq
        out.append(cur)
    return out


DeviceLookup = Union[Mapping[str, Device], Callable[[str], Optional[Device]]]


def _lookup(devices: DeviceLookup, device_id: str) -> Optional[Device]:
    if callable(devices):
        return devices(device_id)
    return devices.get(device_id)


def plan_read(devices: DeviceLookup, zones: Iterable[ResolvedZone], coalesce: bool = True) -> List[ReadRequest]:
    """
    Один или несколько запросов на каждую пригодную зону.
    Неизвестный или выключенный регистратор: зона пропускается (без исключения).
    """
    requests: List[ReadRequest] = []
    for zone in zones:
        if not zone.eligible:
            continue
        device = _lookup(devices, zone.registrador_id)
        if device is None:
            log.warning("Zone %s: registrador %s not found, skipped", zone.zone, zone.registrador_id)
            continue
        if not device.activo:
            log.info("Zone %s: registrador %s is inactive, skipped", zone.zone, device.id)
            continue
        for start, count in zone_spans(zone, device):
            requests.append(ReadRequest(device.id, device.ip, device.puerto, device.unit_id, start, count))

    if coalesce:
        requests = coalesce_requests(requests)
    return requests
