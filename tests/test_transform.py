import pytest

from relaywatch.entities import Box, Template, TemplateFunction, Transformer
from relaywatch.errors import TransformError
from relaywatch.modbus.register_plan import RegisterBlock
from relaywatch.polling.eligibility import resolve_zones
from relaywatch.polling.transform import (
    ERROR_TEXT, derive_feeder_values, display_text, format_value, pair_high_low, placeholder, transform,
)

T1 = {"t1": "x * 200 / 1000"}


def test_transformer_ratio():
    assert transform(100, {"transformadorId": "t1"}, T1) == pytest.approx(20)


def test_ratio_applied_before_user_formula():
    assert transform(100, {"transformadorId": "t1", "formula": "x + 5"}, T1) == pytest.approx(25)


def test_transformer_objects_accepted():
    lookup = {"ti-2": Transformer("ti-2", "TI", "TI 400/1", "x * 400 / 1000")}
    assert transform(50, Box(transformador_id="ti-2"), lookup) == pytest.approx(20)


@pytest.mark.parametrize("decimals, expected", [(0, "--"), (1, "--,-"), (2, "--,--"), (3, "--,--")])
def test_placeholder_without_reading(decimals, expected):
    assert transform(None, {"transformadorId": "t1"}, T1, decimals=decimals) == expected
    assert placeholder(decimals) == expected


def test_transform_is_pure():
    box = {"transformadorId": "t1", "formula": "x / 3"}
    first = transform(123, box, T1)
    assert transform(123, box, T1) == first
    assert box == {"transformadorId": "t1", "formula": "x / 3"}


def test_malformed_formula_falls_back_and_reports():
    errors = []
    value = transform(100, {"transformadorId": "t1", "formula": "x *"}, T1, on_error=errors.append)
    assert value == pytest.approx(20)
    assert len(errors) == 1
    assert isinstance(errors[0], TransformError)
    assert errors[0].stage == "formula"


def test_missing_transformer_keeps_raw():
    errors = []
    assert transform(7, {"transformadorId": "nope"}, T1, on_error=errors.append) == 7
    assert errors[0].stage == "transformador"


def test_division_by_zero_reported():
    errors = []
    assert transform(0, {"formula": "10 / x"}, on_error=errors.append) == 0
    assert errors and errors[0].stage == "formula"


@pytest.mark.parametrize("value, decimals, expected", [
    (20, 2, "20,00"),
    (123.456, 2, "123,46"),
    (1.005, 2, "1,00"),        # 1.005 в двоичном виде чуть меньше
    (2.5, 0, "3"),
    (-2.5, 0, "-3"),
    (0.125, 2, "0,13"),
    (1234.5, 1, "1234,5"),
])
def test_format_value(value, decimals, expected):
    assert format_value(value, decimals) == expected


def test_format_value_non_finite():
    assert format_value(float("inf")) == ERROR_TEXT
    assert format_value(float("nan")) == ERROR_TEXT


def test_display_text():
    assert display_text(100, {"transformadorId": "t1"}, T1) == "20,00"
    assert display_text(None, {}, T1, decimals=1) == "--,-"


def _func(*regs):
    return TemplateFunction.from_dict({"id": "fn", "nombre": "F", "registros": list(regs)})


def test_pair_high_low():
    fn = _func(
        {"etiqueta": "Energia_High", "registro": 4, "transformador_id": "ti-1"},
        {"etiqueta": "Ia", "registro": 1},
        {"etiqueta": "Energia_Low", "registro": 5},
        {"etiqueta": "Solo_High", "registro": 9},
    )
    assert pair_high_low(fn) == [
        ("Energia", (4, 5), "ti-1"),
        ("Ia", (1,), None),
        ("Solo_High", (9,), None),
    ]


def _tarjeta_feeder():
    return {
        "id": "f1",
        "intervalo_consulta_ms": 1000,
        "config_tarjeta": {
            "superior": {"registrador_id": "r1", "funcionalidad_id": "fn"},
            "inferior": {"registrador_id": "r1", "funcionalidad_id": "fn", "oculto": True},
        },
    }


def test_derive_feeder_values_tarjeta():
    template = Template.from_dict({"id": "p", "nombre": "P", "funcionalidades": [{
        "id": "fn", "nombre": "Corrientes",
        "registros": [
            {"etiqueta": "Ia", "registro": 0, "transformador_id": "t1"},
            {"etiqueta": "P_High", "registro": 2},
            {"etiqueta": "P_Low", "registro": 3},
        ],
    }]})
    zones = resolve_zones(_tarjeta_feeder())
    blocks = [RegisterBlock("r1", 0, (100, 0, 1, 10))]
    values = derive_feeder_values(zones, blocks, T1, lambda z: template.find_function(z.funcionalidad_id))

    assert set(values) == {("superior", 0), ("superior", 1)}
    assert values[("superior", 0)].label == "Ia"
    assert values[("superior", 0)].text == "20,00"
    assert values[("superior", 1)].label == "P"
    assert values[("superior", 1)].text == "65546,00"


def test_derive_feeder_values_legacy_missing_address():
    feeder = {
        "id": "f1",
        "intervalo_consulta_ms": 1000,
        "registrador_id": "r1",
        "card_design": {"superior": {"boxes": [
            {"label": "Ia", "indice": 0, "enabled": True},
            {"label": "", "indice": 50, "enabled": True},
            {"label": "Off", "indice": 1, "enabled": False},
        ]}},
    }
    errors = []
    values = derive_feeder_values(resolve_zones(feeder), [RegisterBlock("r1", 0, (42, 7))], on_error=errors.append)

    assert values[("superior", 0)].text == "42,00"
    assert values[("superior", 1)].label == "Box 2"
    assert values[("superior", 1)].text == ERROR_TEXT
    assert values[("superior", 2)].text == "--,--"
    assert values[("superior", 2)].enabled is False
    assert [e.stage for e in errors] == ["registro"]


def test_derive_without_data_gives_placeholders():
    feeder = {"id": "f1", "intervalo_consulta_ms": 1000, "card_design": {
        "inferior": {"registrador_id": "r9", "boxes": [{"label": "V", "indice": 3, "enabled": True}]}}}
    values = derive_feeder_values(resolve_zones(feeder), [], decimals=0)
    assert values[("inferior", 0)].text == "--"


def _legacy(cantidad, boxes):
    return {"id": "f1", "intervalo_consulta_ms": 1000, "registrador_id": "r1",
            "card_design": {"superior": {"cantidad": cantidad, "boxes": boxes}}}


def test_legacy_cantidad_hides_extra_boxes():
    boxes = [{"label": f"B{i}", "indice": i, "enabled": True} for i in range(4)]
    values = derive_feeder_values(resolve_zones(_legacy(2, boxes)), [RegisterBlock("r1", 0, (1, 2, 3, 4))])
    assert sorted(values) == [("superior", 0), ("superior", 1)]
    assert [values[("superior", i)].text for i in range(2)] == ["1,00", "2,00"]


def test_legacy_cantidad_pads_missing_boxes():
    boxes = [{"label": "Ia", "indice": 0, "enabled": True}]
    values = derive_feeder_values(resolve_zones(_legacy(3, boxes)), [RegisterBlock("r1", 0, (5,))])
    assert len(values) == 3
    assert values[("superior", 0)].text == "5,00"
    assert values[("superior", 1)].label == "Box 2"
    assert values[("superior", 2)].label == "Box 3"
    assert values[("superior", 2)].text == "--,--"
    assert values[("superior", 2)].enabled is False


def test_fractional_index_shows_error():
    boxes = [{"label": "Ia", "indice": 0, "enabled": True}, {"label": "X", "indice": 3.7, "enabled": True}]
    errors = []
    values = derive_feeder_values(resolve_zones(_legacy(2, boxes)), [RegisterBlock("r1", 0, (1, 2, 3, 4))],
                                  on_error=errors.append)
    assert values[("superior", 1)].text == ERROR_TEXT
    assert [e.stage for e in errors] == ["registro"]
