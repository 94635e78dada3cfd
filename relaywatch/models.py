from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base
import datetime
import json

Base = declarative_base()


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class _JsonRecord:
    """Строка = id + имя + весь объект JSON-ом (как его отдаёт веб-клиент)."""
    id = Column(String(64), primary_key=True)
    nombre = Column(String(200), nullable=False, default="")
    payload = Column(Text, nullable=False)          # JSON dump of dict
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    def as_dict(self):
        d = json.loads(self.payload) if self.payload else {}
        d["id"] = self.id
        return d


class Registrador(_JsonRecord, Base):
    __tablename__ = "registradores"


class Transformador(_JsonRecord, Base):
    __tablename__ = "transformadores"


class Alimentador(_JsonRecord, Base):
    __tablename__ = "alimentadores"


class Puesto(_JsonRecord, Base):
    __tablename__ = "puestos"


class Plantilla(_JsonRecord, Base):
    __tablename__ = "plantillas"
