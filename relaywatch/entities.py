"""
Доменные сущности RelayWatch в памяти.

Всё хранится во внешней БД как JSON; здесь только разбор (from_dict),
обратная сериализация (as_dict) и иммутабельные копии (with_changes).
Ключи JSON оставлены как в сохранённых конфигурациях (испанские имена полей).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from relaywatch.errors import ConfigError

ZONES: Tuple[str, str] = ("superior", "inferior")
MAX_BOXES_PER_ZONE = 4

ORIGEN_RELE = "rele"
ORIGEN_ANALIZADOR = "analizador"

TIPO_TI = "TI"
TIPO_TV = "TV"


# ---- Утилиты разбора ----
def _text(value) -> Optional[str]:
    """Пустые строки и None: это «не задано». Числовые id приводим к строке."""
    if value is None or isinstance(value, bool):
        return None
    s = str(value).strip()
    return s or None


def _first(d: Mapping[str, Any], *keys, default=None):
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def _int(value, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigError(f"Ожидалось целое число, получено {value!r}") from e


def parse_index(value) -> Optional[float]:
    """
    Индекс регистра бокса: конечное неотрицательное число или None.
    "", None, bool, мусор: None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num) or num < 0:
        return None
    return num


def _mapping(value, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{what}: ожидался объект, получено {type(value).__name__}")
    return value


# ---- Box ----
@dataclass(frozen=True)
class Box:
    label: str = ""
    indice: Any = None                  # как сохранено: число, строка или None
    origen: str = ORIGEN_RELE
    formula: Optional[str] = None
    transformador_id: Optional[str] = None
    enabled: bool = False

    @property
    def address(self) -> Optional[int]:
        """Адрес регистра; дробный индекс (3.7) ни одному регистру не соответствует."""
        idx = parse_index(self.indice)
        if idx is None or not idx.is_integer():
            return None
        return int(idx)

    @property
    def pollable(self) -> bool:
        return self.enabled is True and parse_index(self.indice) is not None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Box":
        d = _mapping(d, "box")
        # indice приоритетнее registro, если ключ вообще присутствует
        indice = d["indice"] if "indice" in d else d.get("registro")
        return cls(
            label=str(d.get("label") or d.get("etiqueta") or "").strip(),
            indice=indice,
            origen=d.get("origen") or ORIGEN_RELE,
            formula=_text(d.get("formula")),
            transformador_id=_text(_first(d, "transformador_id", "transformadorId")),
            enabled=d.get("enabled") is True,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "indice": self.indice,
            "origen": self.origen,
            "formula": self.formula,
            "transformador_id": self.transformador_id,
            "enabled": self.enabled,
        }


# ---- Зоны карточки ----
@dataclass(frozen=True)
class TarjetaZone:
    """Новая схема (config_tarjeta): зона ссылается на функциональность шаблона."""
    registrador_id: Optional[str] = None
    funcionalidad_id: Optional[str] = None
    oculto: bool = False

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TarjetaZone":
        d = _mapping(d, "config_tarjeta")
        return cls(
            registrador_id=_text(d.get("registrador_id")),
            funcionalidad_id=_text(d.get("funcionalidad_id")),
            oculto=bool(d.get("oculto")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "registrador_id": self.registrador_id,
            "funcionalidad_id": self.funcionalidad_id,
            "oculto": self.oculto,
        }


@dataclass(frozen=True)
class CardDesignZone:
    """Старая схема (card_design): зона с явными боксами."""
    registrador_id: Optional[str] = None
    boxes: Tuple[Box, ...] = ()
    titulo_id: Optional[str] = None
    cantidad: int = 1

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "CardDesignZone":
        d = _mapping(d, "card_design")
        boxes = d.get("boxes") or []
        if not isinstance(boxes, (list, tuple)):
            raise ConfigError("card_design.boxes: ожидался список")
        cantidad = min(MAX_BOXES_PER_ZONE, max(1, _int(d.get("cantidad"), default=len(boxes) or 1)))
        return cls(
            registrador_id=_text(d.get("registrador_id")),
            boxes=tuple(Box.from_dict(b or {}) for b in boxes),
            titulo_id=_text(d.get("tituloId")),
            cantidad=cantidad,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "registrador_id": self.registrador_id,
            "boxes": [b.as_dict() for b in self.boxes],
            "tituloId": self.titulo_id,
            "cantidad": self.cantidad,
        }


# ---- Feeder (alimentador) ----
@dataclass(frozen=True)
class Feeder:
    id: str
    nombre: str = ""
    color: Optional[str] = None
    interval_ms: Optional[int] = None
    registrador_id: Optional[str] = None        # legacy, на уровне корня
    config_tarjeta: Optional[Dict[str, TarjetaZone]] = None
    card_design: Dict[str, CardDesignZone] = field(default_factory=dict)
    puesto_id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Feeder":
        d = _mapping(d, "alimentador")
        fid = _text(d.get("id"))
        if not fid:
            raise ConfigError("У алиментадора нет id")

        interval = _first(d, "intervalo_consulta_ms", "interval_ms")
        try:
            interval = int(float(interval)) if interval not in (None, "") else None
        except (TypeError, ValueError, OverflowError):
            interval = None

        config_tarjeta = None
        raw_ct = d.get("config_tarjeta")
        if raw_ct is not None:
            raw_ct = _mapping(raw_ct, "config_tarjeta")
            config_tarjeta = {z: TarjetaZone.from_dict(raw_ct[z]) for z in ZONES if raw_ct.get(z) is not None}

        raw_cd = _mapping(_first(d, "card_design", "cardDesign"), "card_design")
        card_design = {z: CardDesignZone.from_dict(raw_cd[z]) for z in ZONES if raw_cd.get(z) is not None}

        return cls(
            id=fid,
            nombre=str(d.get("nombre") or "").strip(),
            color=d.get("color"),
            interval_ms=interval,
            registrador_id=_text(d.get("registrador_id")),
            config_tarjeta=config_tarjeta,
            card_design=card_design,
            puesto_id=_text(d.get("puesto_id")),
        )

    def as_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "nombre": self.nombre,
            "color": self.color,
            "intervalo_consulta_ms": self.interval_ms,
            "registrador_id": self.registrador_id,
            "card_design": {z: c.as_dict() for z, c in self.card_design.items()},
            "puesto_id": self.puesto_id,
        }
        if self.config_tarjeta is not None:
            d["config_tarjeta"] = {z: c.as_dict() for z, c in self.config_tarjeta.items()}
        return d

    def with_changes(self, **changes) -> "Feeder":
        return replace(self, **changes)


# ---- Device (registrador) ----
@dataclass(frozen=True)
class Device:
    id: str
    nombre: str = ""
    ip: str = ""
    puerto: int = 502
    unit_id: int = 1
    indice_inicial: int = 0
    cantidad_registros: int = 1
    activo: bool = True
    agente_id: Optional[str] = None
    plantilla_id: Optional[str] = None

    @property
    def last_address(self) -> int:
        return self.indice_inicial + max(1, self.cantidad_registros) - 1

    def describe(self) -> str:
        return f"{self.nombre} - {self.ip}:{self.puerto} | Reg: {self.indice_inicial}-{self.last_address}"

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Device":
        d = _mapping(d, "registrador")
        did = _text(d.get("id"))
        if not did:
            raise ConfigError("У регистратора нет id")
        return cls(
            id=did,
            nombre=str(d.get("nombre") or "").strip(),
            ip=str(_first(d, "ip", "host", default="")).strip(),
            puerto=_int(_first(d, "puerto", "port"), default=502),
            unit_id=_int(_first(d, "unit_id", "unidad"), default=1),
            indice_inicial=_int(_first(d, "indice_inicial", "indiceInicial"), default=0),
            cantidad_registros=_int(_first(d, "cantidad_registros", "cantRegistros"), default=1),
            activo=d.get("activo", True) is not False,
            agente_id=_text(d.get("agente_id")),
            plantilla_id=_text(d.get("plantilla_id")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nombre": self.nombre,
            "ip": self.ip,
            "puerto": self.puerto,
            "unit_id": self.unit_id,
            "indice_inicial": self.indice_inicial,
            "cantidad_registros": self.cantidad_registros,
            "activo": self.activo,
            "agente_id": self.agente_id,
            "plantilla_id": self.plantilla_id,
        }


# ---- Transformer (TI/TV) ----
@dataclass(frozen=True)
class Transformer:
    id: str
    tipo: str
    nombre: str
    formula: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Transformer":
        d = _mapping(d, "transformador")
        tid = _text(d.get("id"))
        if not tid:
            raise ConfigError("У трансформатора нет id")
        tipo = str(d.get("tipo") or "").strip().upper()
        if tipo not in (TIPO_TI, TIPO_TV):
            raise ConfigError(f"Неизвестный тип трансформатора {tipo!r}")
        return cls(
            id=tid,
            tipo=tipo,
            nombre=str(d.get("nombre") or "").strip(),
            formula=str(d.get("formula") or "").strip(),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "tipo": self.tipo, "nombre": self.nombre, "formula": self.formula}


DEFAULT_TRANSFORMERS: Tuple[Transformer, ...] = (
    Transformer("ti-1", TIPO_TI, "TI 200/1", "x * 200 / 1000"),
    Transformer("ti-2", TIPO_TI, "TI 400/1", "x * 400 / 1000"),
    Transformer("ti-3", TIPO_TI, "TI 600/1", "x * 600 / 1000"),
    Transformer("tv-1", TIPO_TV, "TV 33kV", "x * 33000 / 10000"),
    Transformer("tv-2", TIPO_TV, "TV 13.2kV", "x * 13200 / 10000"),
)


# ---- Template (plantilla) ----
@dataclass(frozen=True)
class TemplateRegister:
    etiqueta: str
    registro: int
    transformador_id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TemplateRegister":
        d = _mapping(d, "registro")
        addr = parse_index(_first(d, "registro", "valor"))
        if addr is None:
            raise ConfigError(f"Регистр шаблона без адреса: {dict(d)!r}")
        return cls(
            etiqueta=str(d.get("etiqueta") or "").strip(),
            registro=int(addr),
            transformador_id=_text(_first(d, "transformador_id", "transformadorId")),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {"etiqueta": self.etiqueta, "registro": self.registro, "transformador_id": self.transformador_id}


@dataclass(frozen=True)
class TemplateFunction:
    """Функциональность (funcionalidad): упорядоченный набор регистров."""
    id: str
    nombre: str = ""
    registros: Tuple[TemplateRegister, ...] = ()
    habilitado: bool = True

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TemplateFunction":
        d = _mapping(d, "funcionalidad")
        fid = _text(d.get("id"))
        if not fid:
            raise ConfigError("У функциональности нет id")
        nombre = str(d.get("nombre") or "").strip()
        registros = d.get("registros")
        if registros is None and d.get("registro") not in (None, ""):
            # старые шаблоны: одна функциональность = один регистр
            registros = [{"etiqueta": nombre or fid, "registro": d.get("registro")}]
        return cls(
            id=fid,
            nombre=nombre,
            registros=tuple(TemplateRegister.from_dict(r) for r in registros or []),
            habilitado=d.get("habilitado", True) is not False,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nombre": self.nombre,
            "registros": [r.as_dict() for r in self.registros],
            "habilitado": self.habilitado,
        }


@dataclass(frozen=True)
class Template:
    id: str
    nombre: str
    descripcion: str = ""
    funcionalidades: Tuple[TemplateFunction, ...] = ()
    fecha_creacion: Optional[str] = None

    def find_function(self, funcionalidad_id: str) -> Optional[TemplateFunction]:
        for f in self.funcionalidades:
            if f.id == funcionalidad_id:
                return f
        return None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Template":
        d = _mapping(d, "plantilla")
        pid = _text(d.get("id"))
        if not pid:
            raise ConfigError("У шаблона нет id")
        funcs = d.get("funcionalidades") or []
        if isinstance(funcs, Mapping):
            # старый формат: {id: {...}}
            funcs = [dict(v or {}, id=v.get("id", k) if v else k) for k, v in funcs.items()]
        return cls(
            id=pid,
            nombre=str(d.get("nombre") or "").strip(),
            descripcion=str(d.get("descripcion") or "").strip(),
            funcionalidades=tuple(TemplateFunction.from_dict(f) for f in funcs),
            fecha_creacion=_first(d, "fecha_creacion", "fechaCreacion"),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nombre": self.nombre,
            "descripcion": self.descripcion,
            "funcionalidades": [f.as_dict() for f in self.funcionalidades],
            "fecha_creacion": self.fecha_creacion,
        }


# ---- Station (puesto) ----
@dataclass(frozen=True)
class Station:
    id: str
    nombre: str = ""
    feeder_ids: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Station":
        d = _mapping(d, "puesto")
        sid = _text(d.get("id"))
        if not sid:
            raise ConfigError("У пуэсто нет id")
        raw = d.get("alimentadores") or d.get("feeder_ids") or []
        ids: List[str] = []
        for item in raw:
            fid = _text(item.get("id")) if isinstance(item, Mapping) else _text(item)
            if fid:
                ids.append(fid)
        return cls(id=sid, nombre=str(d.get("nombre") or "").strip(), feeder_ids=tuple(ids))

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "nombre": self.nombre, "feeder_ids": list(self.feeder_ids)}
