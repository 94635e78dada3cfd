"""
Проверка «можно ли запускать опрос» для алиментадора.

Две схемы конфигурации сводятся к одной канонической форме ResolvedZone:
    config_tarjeta (новая)  -> проверяется первой, позонно;
    card_design (старая)    -> только если зоны в новой схеме нет вовсе;
    registrador_id в корне  -> запасной регистратор для старой схемы.
Результат не кэшируется на сущности: вызывать перед каждым решением.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union

from relaywatch.entities import ZONES, Box, Feeder
from relaywatch.errors import ConfigError

log = logging.getLogger(__name__)

SCHEMA_TARJETA = "config_tarjeta"
SCHEMA_CARD_DESIGN = "card_design"
SCHEMA_ROOT = "registrador_id"


@dataclass(frozen=True)
class ResolvedZone:
    zone: str
    schema: Optional[str]                   # None: зона не сконфигурирована
    registrador_id: Optional[str]
    funcionalidad_id: Optional[str] = None
    boxes: Tuple[Box, ...] = ()
    oculto: bool = False
    eligible: bool = False
    cantidad: int = 0                       # card_design: сколько боксов показывать


FeederLike = Union[Feeder, Mapping]


def _as_feeder(feeder: FeederLike) -> Feeder:
    return feeder if isinstance(feeder, Feeder) else Feeder.from_dict(feeder)


def interval_is_valid(feeder: Feeder) -> bool:
    return feeder.interval_ms is not None and feeder.interval_ms > 0


def resolve_zone(feeder: Feeder, zone: str) -> ResolvedZone:
    tarjeta = (feeder.config_tarjeta or {}).get(zone)
    if tarjeta is not None:
        return ResolvedZone(
            zone=zone,
            schema=SCHEMA_TARJETA,
            registrador_id=tarjeta.registrador_id,
            funcionalidad_id=tarjeta.funcionalidad_id,
            oculto=tarjeta.oculto,
            eligible=bool(tarjeta.registrador_id and tarjeta.funcionalidad_id and not tarjeta.oculto),
        )

    design = feeder.card_design.get(zone)
    registrador_id = (design.registrador_id if design else None) or feeder.registrador_id
    boxes = design.boxes if design else ()
    if design is not None:
        schema = SCHEMA_CARD_DESIGN
    elif registrador_id:
        schema = SCHEMA_ROOT
    else:
        schema = None
    return ResolvedZone(
        zone=zone,
        schema=schema,
        registrador_id=registrador_id,
        boxes=boxes,
        eligible=bool(registrador_id) and any(b.pollable for b in boxes),
        cantidad=design.cantidad if design else 0,
    )


def resolve_zones(feeder: FeederLike) -> Dict[str, ResolvedZone]:
    feeder = _as_feeder(feeder)
    return {z: resolve_zone(feeder, z) for z in ZONES}


def can_poll(feeder: FeederLike) -> bool:
    try:
        feeder = _as_feeder(feeder)
    except ConfigError as e:
        log.warning("Feeder config rejected: %s", e)
        return False
    if not interval_is_valid(feeder):
        return False
    return any(rz.eligible for rz in resolve_zones(feeder).values())


def zone_device_id(feeder: Feeder, zone: str) -> Optional[str]:
    """Регистратор зоны для отображения: config_tarjeta -> card_design -> корень."""
    tarjeta = (feeder.config_tarjeta or {}).get(zone)
    if tarjeta is not None and tarjeta.registrador_id:
        return tarjeta.registrador_id
    design = feeder.card_design.get(zone)
    if design is not None and design.registrador_id:
        return design.registrador_id
    return feeder.registrador_id
