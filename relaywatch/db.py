# relaywatch/db.py
from __future__ import annotations
import os, json, logging
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from resources import DB_PATH
from relaywatch.entities import DEFAULT_TRANSFORMERS, Device, Feeder, Station, Template, Transformer
from relaywatch.errors import ConfigError
from relaywatch.models import Base, Registrador, Transformador, Alimentador, Puesto, Plantilla

log = logging.getLogger(__name__)

_engine = None
_Session: Optional[sessionmaker] = None

KINDS: Dict[str, Type] = {
    "registradores": Registrador,
    "transformadores": Transformador,
    "alimentadores": Alimentador,
    "puestos": Puesto,
    "plantillas": Plantilla,
}


def init_db(db_path: Optional[str] = None, seed: bool = True) -> None:
    """
    Инициализация SQLite-хранилища. Безопасно вызывать при старте.
    Можно передать путь к БД (или ":memory:"), иначе берём resources.DB_PATH.
    Пустую таблицу трансформаторов заполняем стандартными TI/TV.
    """
    global _engine, _Session
    path = db_path or DB_PATH

    if path == ":memory:":
        _engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        folder = os.path.dirname(os.path.abspath(path))
        os.makedirs(folder, exist_ok=True)
        _engine = create_engine(f"sqlite:///{path}")

    Base.metadata.create_all(_engine)
    _Session = sessionmaker(bind=_engine, expire_on_commit=False)

    if seed:
        with _session() as s:
            count = s.scalar(select(func.count()).select_from(Transformador))
            if not count:
                for t in DEFAULT_TRANSFORMERS:
                    s.add(_new_row(Transformador, t.as_dict()))
                s.commit()
                log.info("Seeded %d default transformers", len(DEFAULT_TRANSFORMERS))


def _session() -> Session:
    if _Session is None:
        init_db()
    return _Session()


def _model(kind: str) -> Type:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Неизвестная коллекция {kind!r}") from None


def _new_row(model, data: Dict[str, Any]):
    return model(
        id=str(data["id"]),
        nombre=str(data.get("nombre") or ""),
        payload=json.dumps(dict(data), ensure_ascii=False),
    )


# ---------- Общий CRUD ----------
def get_all(kind: str) -> List[Dict[str, Any]]:
    model = _model(kind)
    with _session() as s:
        rows = s.scalars(select(model).order_by(model.created_at, model.id)).all()
        return [r.as_dict() for r in rows]


def get_by_id(kind: str, record_id: str) -> Optional[Dict[str, Any]]:
    record_id = (record_id or "").strip()
    if not record_id:
        return None
    with _session() as s:
        row = s.get(_model(kind), record_id)
        return row.as_dict() if row else None


def save(kind: str, data: Dict[str, Any]) -> None:
    """
    Создаёт или обновляет запись по id (upsert).
    """
    if not data.get("id"):
        raise ValueError("Запись без id не сохраняется")
    model = _model(kind)
    with _session() as s:
        row = s.get(model, str(data["id"]))
        if row is None:
            s.add(_new_row(model, data))
        else:
            row.nombre = str(data.get("nombre") or "")
            row.payload = json.dumps(dict(data), ensure_ascii=False)
        s.commit()


def delete(kind: str, record_id: str) -> bool:
    with _session() as s:
        row = s.get(_model(kind), (record_id or "").strip())
        if row is None:
            return False
        s.delete(row)
        s.commit()
        return True


# ---------- Типизированная загрузка ----------
def load_devices() -> List[Device]:
    return _load_entities("registradores", Device.from_dict)


def load_transformers() -> List[Transformer]:
    return _load_entities("transformadores", Transformer.from_dict)


def load_feeders() -> List[Feeder]:
    return _load_entities("alimentadores", Feeder.from_dict)


def load_stations() -> List[Station]:
    return _load_entities("puestos", Station.from_dict)


def load_templates() -> List[Template]:
    return _load_entities("plantillas", Template.from_dict)


def _load_entities(kind: str, parser) -> list:
    out = []
    for d in get_all(kind):
        try:
            out.append(parser(d))
        except ConfigError as e:
            log.warning("Skipping broken %s record %s: %s", kind, d.get("id"), e)
    return out
