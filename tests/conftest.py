import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtCore import QCoreApplication

from relaywatch import db
from relaywatch.entities import DEFAULT_TRANSFORMERS, Device, Feeder, Station
from relaywatch.state.catalog import Catalog


@pytest.fixture(scope="session")
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def memory_db():
    db.init_db(":memory:")
    yield db


def make_feeder(fid="f1", interval=100, **extra):
    data = {
        "id": fid,
        "nombre": f"Alimentador {fid}",
        "intervalo_consulta_ms": interval,
        "card_design": {
            "superior": {
                "registrador_id": "r1",
                "boxes": [
                    {"label": "Ia", "indice": 10, "enabled": True, "transformador_id": "ti-1"},
                    {"label": "Ib", "indice": 11, "enabled": True},
                ],
            },
        },
    }
    data.update(extra)
    return Feeder.from_dict(data)


@pytest.fixture
def device():
    return Device(id="r1", nombre="Rele 1", ip="10.0.0.5", puerto=502, indice_inicial=0, cantidad_registros=20)


@pytest.fixture
def catalog(device):
    return Catalog(
        feeders=[make_feeder("f1"), make_feeder("f2"), make_feeder("f3", interval=0)],
        devices=[device],
        transformers=DEFAULT_TRANSFORMERS,
        stations=[Station("p1", "Puesto 1", ("f1", "f2", "f3"))],
    )
