import pytest

from relaywatch import db
from relaywatch.entities import Device, Feeder, Station, Template
from relaywatch.errors import ConfigError
from relaywatch.polling.eligibility import resolve_zones
from relaywatch.state.catalog import SIN_ASIGNAR, Catalog


def test_transformers_by_tipo(catalog):
    assert [t.nombre for t in catalog.ti_list()] == ["TI 200/1", "TI 400/1", "TI 600/1"]
    assert [t.id for t in catalog.tv_list()] == ["tv-1", "tv-2"]


def test_create_transformer_trims_and_validates(catalog):
    t = catalog.create_transformer("ti", "  TI 800/1 ", " x * 800 / 1000 ")
    assert t.id.startswith("tr-")
    assert (t.tipo, t.nombre, t.formula) == ("TI", "TI 800/1", "x * 800 / 1000")
    assert catalog.get_transformer(t.id) == t
    with pytest.raises(ConfigError):
        catalog.create_transformer("XX", "a", "x")
    with pytest.raises(ConfigError):
        catalog.create_transformer("TV", "a", "x *")
    with pytest.raises(ConfigError):
        catalog.create_transformer("TV", "", "x")


def test_update_transformer_keeps_empty_fields(catalog):
    before = catalog.transformers
    t = catalog.update_transformer("ti-1", nombre="", formula="x * 250 / 1000")
    assert t.nombre == "TI 200/1"
    assert t.formula == "x * 250 / 1000"
    assert before["ti-1"].formula == "x * 200 / 1000"
    assert catalog.delete_transformer("ti-1") is True
    assert catalog.delete_transformer("ti-1") is False


def test_template_crud(catalog):
    tpl = catalog.create_template("REF615", "Rele", [{"id": "corr", "nombre": "Corrientes",
                                                      "registros": [{"etiqueta": "Ia", "registro": 0}]}])
    assert tpl.id.startswith("plt-")
    assert tpl.fecha_creacion
    assert tpl.find_function("corr").registros[0].etiqueta == "Ia"

    updated = catalog.update_template(tpl.id, descripcion="Modelo ABB")
    assert updated.nombre == "REF615"
    assert updated.descripcion == "Modelo ABB"
    assert updated.fecha_creacion == tpl.fecha_creacion
    assert catalog.delete_template(tpl.id) is True
    with pytest.raises(ConfigError):
        catalog.update_template(tpl.id, nombre="x")


def test_function_for_zone_prefers_device_template():
    t1 = Template.from_dict({"id": "p1", "nombre": "A", "funcionalidades": [{"id": "fn", "nombre": "A"}]})
    t2 = Template.from_dict({"id": "p2", "nombre": "B", "funcionalidades": [{"id": "fn", "nombre": "B"}]})
    catalog = Catalog(devices=[Device("r1", plantilla_id="p2")], templates=[t1, t2])
    zone = resolve_zones({"id": "f", "config_tarjeta": {"superior": {"registrador_id": "r1", "funcionalidad_id": "fn"}}})
    assert catalog.function_for_zone(zone["superior"]).nombre == "B"
    assert catalog.function_for_zone(zone["inferior"]) is None


def test_feeders_in_station_skips_unknown(catalog):
    catalog.put_station(Station("p2", "Otro", ("f1", "zz")))
    assert [f.id for f in catalog.feeders_in_station("p2")] == ["f1"]
    assert catalog.feeders_in_station("nope") == []


def test_describe_zone_device(catalog):
    f1 = catalog.get_feeder("f1")
    assert catalog.describe_zone_device(f1, "superior") == "Rele 1 - 10.0.0.5:502 | Reg: 0-19"
    assert catalog.describe_zone_device(f1, "inferior") == SIN_ASIGNAR


def test_update_feeder_makes_copy(catalog):
    old = catalog.get_feeder("f1")
    new = catalog.update_feeder("f1", interval_ms=500)
    assert old.interval_ms == 100
    assert new.interval_ms == 500
    assert catalog.get_feeder("f1") is new


def test_from_db_and_persist(memory_db):
    db.save("alimentadores", {"id": "a1", "nombre": "Norte", "intervalo_consulta_ms": 1000})
    catalog = Catalog.from_db()
    assert catalog.get_feeder("a1").nombre == "Norte"
    assert len(catalog.transformers) == 5

    catalog.create_transformer("TV", "TV 66kV", "x * 66000 / 10000")
    catalog.remove_feeder("a1")
    catalog.put_device(Device("r9", "Nuevo"))

    fresh = Catalog.from_db()
    assert len(fresh.tv_list()) == 3
    assert fresh.get_feeder("a1") is None
    assert fresh.get_device("r9").nombre == "Nuevo"


def test_put_feeder_roundtrip(memory_db):
    catalog = Catalog(persist=True)
    catalog.put_feeder(Feeder.from_dict({"id": "b1", "config_tarjeta": {"superior": {"registrador_id": "r1"}}}))
    assert db.get_by_id("alimentadores", "b1")["config_tarjeta"]["superior"]["registrador_id"] == "r1"


def test_disabled_function_is_not_used():
    off = Template.from_dict({"id": "p1", "nombre": "A", "funcionalidades": [
        {"id": "fn", "nombre": "A", "habilitado": False}]})
    on = Template.from_dict({"id": "p2", "nombre": "B", "funcionalidades": [{"id": "fn", "nombre": "B"}]})
    zone = resolve_zones({"id": "f", "config_tarjeta": {"superior": {"registrador_id": "r1", "funcionalidad_id": "fn"}}})

    assert Catalog(devices=[Device("r1", plantilla_id="p1")], templates=[off, on]).function_for_zone(zone["superior"]) is None
    assert Catalog(devices=[Device("r1")], templates=[off, on]).function_for_zone(zone["superior"]).nombre == "B"
    assert Catalog(devices=[Device("r1")], templates=[off]).function_for_zone(zone["superior"]) is None
