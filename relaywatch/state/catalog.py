# relaywatch/state/catalog.py
"""
Каталог конфигурации в памяти: алиментадоры, регистраторы, трансформаторы,
шаблоны и пуэсто. Читается из БД один раз при старте (Catalog.from_db).
Сущности иммутабельны, изменения только через новые копии.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from typing import Dict, Iterable, List, Optional

from relaywatch import db
from relaywatch.entities import (
    TIPO_TI, TIPO_TV, Device, Feeder, Station, Template, TemplateFunction, Transformer,
)
from relaywatch.errors import ConfigError
from relaywatch.formulas import validate_formula
from relaywatch.polling.eligibility import ResolvedZone, zone_device_id

log = logging.getLogger(__name__)

SIN_ASIGNAR = "Sin asignar"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _by_id(items: Iterable) -> Dict[str, object]:
    return {item.id: item for item in items}


class Catalog:
    def __init__(self, feeders: Iterable[Feeder] = (), devices: Iterable[Device] = (),
                 transformers: Iterable[Transformer] = (), templates: Iterable[Template] = (),
                 stations: Iterable[Station] = (), persist: bool = False):
        self.feeders: Dict[str, Feeder] = _by_id(feeders)
        self.devices: Dict[str, Device] = _by_id(devices)
        self.transformers: Dict[str, Transformer] = _by_id(transformers)
        self.templates: Dict[str, Template] = _by_id(templates)
        self.stations: Dict[str, Station] = _by_id(stations)
        # persist=True: каждое изменение сразу пишется в БД
        self.persist = persist

    @classmethod
    def from_db(cls) -> "Catalog":
        catalog = cls(
            feeders=db.load_feeders(),
            devices=db.load_devices(),
            transformers=db.load_transformers(),
            templates=db.load_templates(),
            stations=db.load_stations(),
            persist=True,
        )
        log.info("Catalog loaded: %d feeders, %d registradores, %d transformers, %d templates, %d puestos",
                 len(catalog.feeders), len(catalog.devices), len(catalog.transformers),
                 len(catalog.templates), len(catalog.stations))
        return catalog

    def _save(self, kind: str, entity) -> None:
        if self.persist:
            db.save(kind, entity.as_dict())

    def _delete(self, kind: str, entity_id: str) -> None:
        if self.persist:
            db.delete(kind, entity_id)

    # ---------- Поиск ----------
    def get_feeder(self, feeder_id: str) -> Optional[Feeder]:
        return self.feeders.get(feeder_id)

    def get_device(self, device_id: Optional[str]) -> Optional[Device]:
        return self.devices.get(device_id) if device_id else None

    def get_station(self, station_id: str) -> Optional[Station]:
        return self.stations.get(station_id)

    def feeders_in_station(self, station_id: str) -> List[Feeder]:
        station = self.stations.get(station_id)
        if station is None:
            return []
        out = []
        for fid in station.feeder_ids:
            feeder = self.feeders.get(fid)
            if feeder is None:
                log.warning("Puesto %s references unknown feeder %s", station_id, fid)
                continue
            out.append(feeder)
        return out

    def function_for_zone(self, zone: ResolvedZone) -> Optional[TemplateFunction]:
        """Функциональность зоны: сперва шаблон регистратора, затем любой шаблон с таким id. Выключенные не отдаём."""
        if not zone.funcionalidad_id:
            return None
        device = self.get_device(zone.registrador_id)
        if device is not None and device.plantilla_id:
            template = self.templates.get(device.plantilla_id)
            if template is not None:
                found = template.find_function(zone.funcionalidad_id)
                if found is not None:
                    return found if found.habilitado else None
        for template in self.templates.values():
            found = template.find_function(zone.funcionalidad_id)
            if found is not None and found.habilitado:
                return found
        return None

    def describe_zone_device(self, feeder: Feeder, zone: str) -> str:
        device = self.get_device(zone_device_id(feeder, zone))
        return device.describe() if device else SIN_ASIGNAR

    # ---------- Алиментадоры / регистраторы / пуэсто ----------
    def put_feeder(self, feeder: Feeder) -> Feeder:
        self.feeders = {**self.feeders, feeder.id: feeder}
        self._save("alimentadores", feeder)
        return feeder

    def update_feeder(self, feeder_id: str, **changes) -> Feeder:
        current = self.feeders.get(feeder_id)
        if current is None:
            raise ConfigError(f"Алиментадор {feeder_id!r} не найден")
        return self.put_feeder(current.with_changes(**changes))

    def remove_feeder(self, feeder_id: str) -> bool:
        if feeder_id not in self.feeders:
            return False
        self.feeders = {k: v for k, v in self.feeders.items() if k != feeder_id}
        self._delete("alimentadores", feeder_id)
        return True

    def put_device(self, device: Device) -> Device:
        self.devices = {**self.devices, device.id: device}
        self._save("registradores", device)
        return device

    def put_station(self, station: Station) -> Station:
        self.stations = {**self.stations, station.id: station}
        self._save("puestos", station)
        return station

    # ---------- Трансформаторы ----------
    def transformer_lookup(self) -> Dict[str, Transformer]:
        return dict(self.transformers)

    def get_transformer(self, transformer_id: Optional[str]) -> Optional[Transformer]:
        return self.transformers.get(transformer_id) if transformer_id else None

    def transformers_by_tipo(self, tipo: str) -> List[Transformer]:
        tipo = (tipo or "").strip().upper()
        return [t for t in self.transformers.values() if t.tipo == tipo]

    def ti_list(self) -> List[Transformer]:
        return self.transformers_by_tipo(TIPO_TI)

    def tv_list(self) -> List[Transformer]:
        return self.transformers_by_tipo(TIPO_TV)

    @staticmethod
    def _check_transformer(tipo: str, nombre: str, formula: str) -> None:
        if tipo not in (TIPO_TI, TIPO_TV):
            raise ConfigError(f"Тип трансформатора должен быть TI или TV, получено {tipo!r}")
        if not nombre:
            raise ConfigError("Не задано имя трансформатора")
        if not formula:
            raise ConfigError("Не задана формула трансформатора")
        problem = validate_formula(formula)
        if problem:
            raise ConfigError(f"Формула {formula!r}: {problem}")

    def create_transformer(self, tipo: str, nombre: str, formula: str) -> Transformer:
        tipo = (tipo or "").strip().upper()
        nombre = (nombre or "").strip()
        formula = (formula or "").strip()
        self._check_transformer(tipo, nombre, formula)
        t = Transformer(_new_id("tr"), tipo, nombre, formula)
        self.transformers = {**self.transformers, t.id: t}
        self._save("transformadores", t)
        return t

    def update_transformer(self, transformer_id: str, nombre: Optional[str] = None,
                           formula: Optional[str] = None) -> Transformer:
        """Пустые поля не затирают старые значения."""
        current = self.transformers.get(transformer_id)
        if current is None:
            raise ConfigError(f"Трансформатор {transformer_id!r} не найден")
        nombre = (nombre or "").strip() or current.nombre
        formula = (formula or "").strip() or current.formula
        self._check_transformer(current.tipo, nombre, formula)
        t = Transformer(current.id, current.tipo, nombre, formula)
        self.transformers = {**self.transformers, t.id: t}
        self._save("transformadores", t)
        return t

    def delete_transformer(self, transformer_id: str) -> bool:
        if transformer_id not in self.transformers:
            return False
        self.transformers = {k: v for k, v in self.transformers.items() if k != transformer_id}
        self._delete("transformadores", transformer_id)
        return True

    # ---------- Шаблоны ----------
    def get_template(self, template_id: str) -> Optional[Template]:
        return self.templates.get(template_id)

    def create_template(self, nombre: str, descripcion: str = "",
                        funcionalidades: Iterable[dict] = ()) -> Template:
        nombre = (nombre or "").strip()
        if not nombre:
            raise ConfigError("Не задано имя шаблона")
        template = Template.from_dict({
            "id": _new_id("plt"),
            "nombre": nombre,
            "descripcion": (descripcion or "").strip(),
            "funcionalidades": list(funcionalidades),
            "fecha_creacion": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        })
        self.templates = {**self.templates, template.id: template}
        self._save("plantillas", template)
        return template

    def update_template(self, template_id: str, nombre: Optional[str] = None,
                        descripcion: Optional[str] = None,
                        funcionalidades: Optional[Iterable[dict]] = None) -> Template:
        current = self.templates.get(template_id)
        if current is None:
            raise ConfigError(f"Шаблон {template_id!r} не найден")
        data = current.as_dict()
        if nombre is not None and nombre.strip():
            data["nombre"] = nombre.strip()
        if descripcion is not None:
            data["descripcion"] = descripcion.strip()
        if funcionalidades is not None:
            data["funcionalidades"] = list(funcionalidades)
        template = Template.from_dict(data)
        self.templates = {**self.templates, template.id: template}
        self._save("plantillas", template)
        return template

    def delete_template(self, template_id: str) -> bool:
        if template_id not in self.templates:
            return False
        self.templates = {k: v for k, v in self.templates.items() if k != template_id}
        self._delete("plantillas", template_id)
        return True
