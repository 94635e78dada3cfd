"""
Пересчёт сырого значения регистра в отображаемое.

Порядок фиксирован:
    1) формула трансформатора (TI/TV), x = сырое значение
    2) пользовательская формула бокса, x = результат шага 1
Ошибка любой стадии не роняет опрос: берём значение предыдущей стадии
и сообщаем TransformError через on_error и лог.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from relaywatch.entities import MAX_BOXES_PER_ZONE, ORIGEN_RELE, Box, TemplateFunction, Transformer
from relaywatch.errors import FormulaError, TransformError
from relaywatch.formulas import apply_formula
from relaywatch.modbus.register_plan import RegisterBlock, u32_from_words
from relaywatch.polling.eligibility import SCHEMA_TARJETA, ResolvedZone

log = logging.getLogger(__name__)

DEFAULT_DECIMALS = 2
PLACEHOLDER = "--,--"
ERROR_TEXT = "ERROR"

Number = Union[int, float]
TransformerLookup = Mapping[str, Union[str, Transformer]]
ErrorCallback = Optional[Callable[[TransformError], None]]

_HIGH_LOW_RE = re.compile(r"^(.+)_(high|low)$", re.IGNORECASE)


def placeholder(decimals: Optional[int] = DEFAULT_DECIMALS) -> str:
    if decimals == 0:
        return "--"
    if decimals == 1:
        return "--,-"
    return PLACEHOLDER


def format_value(value: Number, decimals: Optional[int] = DEFAULT_DECIMALS) -> str:
    """
    Фиксированное число знаков и десятичная запятая: 123.456 -> "123,46".
    Округление половины от нуля по точному двоичному значению (как toFixed в браузере).
    """
    if decimals is None:
        decimals = DEFAULT_DECIMALS
    if value is None or isinstance(value, bool) or not math.isfinite(value):
        return ERROR_TEXT
    quant = Decimal(1).scaleb(-decimals)
    try:
        text = str(Decimal(value).quantize(quant, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # больше 28 значащих цифр: точность Decimal не хватает
        text = f"{value:.{decimals}f}"
    return text.replace(".", ",")


def _report(on_error: ErrorCallback, err: TransformError) -> None:
    log.warning("Transform %s: %s", err.stage, err)
    if on_error is not None:
        on_error(err)


def _as_box(box: Union[Box, Mapping, None]) -> Box:
    if box is None:
        return Box()
    return box if isinstance(box, Box) else Box.from_dict(box)


def _transformer_formula(transformers: Optional[TransformerLookup], tid: str) -> Optional[str]:
    if not transformers:
        return None
    found = transformers.get(tid)
    if isinstance(found, Transformer):
        return found.formula
    return found


def _is_number(raw) -> bool:
    return isinstance(raw, (int, float)) and not isinstance(raw, bool) and math.isfinite(raw)


def transform(
    raw: Optional[Number],
    box: Union[Box, Mapping, None],
    transformers: Optional[TransformerLookup] = None,
    decimals: Optional[int] = DEFAULT_DECIMALS,
    on_error: ErrorCallback = None,
) -> Union[Number, str]:
    """
    Возвращает число или строку-заглушку, если чтения ещё не было.
    Чистая функция: одинаковый вход: одинаковый выход.
    """
    if not _is_number(raw):
        return placeholder(decimals)
    box = _as_box(box)
    value: Number = raw

    if box.transformador_id:
        formula = _transformer_formula(transformers, box.transformador_id)
        if formula is None:
            _report(on_error, TransformError(
                f"Трансформатор {box.transformador_id!r} не найден", "transformador", fallback=raw))
        else:
            try:
                value = apply_formula(formula, raw)
            except FormulaError as e:
                _report(on_error, TransformError(
                    f"Формула трансформатора {box.transformador_id!r}: {e}", "transformador", fallback=raw))

    if box.formula and box.formula.strip():
        try:
            value = apply_formula(box.formula, value)
        except FormulaError as e:
            _report(on_error, TransformError(f"Формула {box.formula!r}: {e}", "formula", fallback=value))

    return value


def display_text(raw: Optional[Number], box, transformers=None, decimals=DEFAULT_DECIMALS, on_error=None) -> str:
    value = transform(raw, box, transformers, decimals, on_error)
    return value if isinstance(value, str) else format_value(value, decimals)


# ---------- Значения целой карточки ----------
@dataclass(frozen=True)
class DisplayValue:
    label: str
    text: str
    enabled: bool = True
    origen: str = ORIGEN_RELE
    value: Optional[Number] = None


BoxKey = Tuple[str, int]
_MISSING = object()


def index_blocks(blocks: Iterable[RegisterBlock]) -> Dict[str, List[RegisterBlock]]:
    out: Dict[str, List[RegisterBlock]] = {}
    for b in blocks:
        out.setdefault(b.device_id, []).append(b)
    return out


def _raw_at(by_device: Mapping[str, List[RegisterBlock]], device_id: Optional[str], address: int):
    """None: данных по устройству нет; _MISSING: устройство ответило, но адреса нет в блоке."""
    blocks = by_device.get(device_id) if device_id else None
    if not blocks:
        return None
    for b in blocks:
        v = b.value_at(address)
        if v is not None:
            return v
    return _MISSING


def pair_high_low(function: TemplateFunction) -> List[Tuple[str, Tuple[int, ...], Optional[str]]]:
    """
    Регистры шаблона -> [(метка, адреса, transformador_id)].
    Пара <base>_High/<base>_Low склеивается в одно 32-битное значение под меткой <base>.
    Порядок: по первому появлению.
    """
    halves: Dict[str, Dict[str, object]] = {}
    for reg in function.registros:
        m = _HIGH_LOW_RE.match(reg.etiqueta or "")
        if m:
            halves.setdefault(m.group(1).lower(), {})[m.group(2).lower()] = reg

    entries: List[Tuple[str, Tuple[int, ...], Optional[str]]] = []
    done = set()
    for reg in function.registros:
        m = _HIGH_LOW_RE.match(reg.etiqueta or "")
        key = m.group(1).lower() if m else None
        pair = halves.get(key) if key else None
        if pair and "high" in pair and "low" in pair:
            if key in done:
                continue
            done.add(key)
            hi, lo = pair["high"], pair["low"]
            tid = hi.transformador_id or lo.transformador_id
            entries.append((m.group(1), (hi.registro, lo.registro), tid))
        else:
            entries.append((reg.etiqueta, (reg.registro,), reg.transformador_id))
    return entries


def _raw_for_addresses(by_device, device_id, addresses: Tuple[int, ...]):
    raws = [_raw_at(by_device, device_id, a) for a in addresses]
    if any(r is None for r in raws):
        return None
    if any(r is _MISSING for r in raws):
        return _MISSING
    if len(raws) == 2:
        return u32_from_words(raws[0], raws[1])
    return raws[0]


def derive_zone_values(
    zone: ResolvedZone,
    blocks: Mapping[str, List[RegisterBlock]],
    transformers: Optional[TransformerLookup] = None,
    function: Optional[TemplateFunction] = None,
    decimals: Optional[int] = DEFAULT_DECIMALS,
    on_error: ErrorCallback = None,
) -> List[DisplayValue]:
    if zone.oculto:
        return []

    if zone.schema == SCHEMA_TARJETA:
        if function is None:
            if zone.eligible:
                _report(on_error, TransformError(
                    f"Функциональность {zone.funcionalidad_id!r} не найдена", "registro"))
            return []
        items = [
            (label, addrs, Box(label=label, indice=addrs[0], transformador_id=tid, enabled=True))
            for label, addrs, tid in pair_high_low(function)
        ]
    else:
        # ровно cantidad боксов: недостающие пустые, лишние сохранённые не показываем
        items = []
        for i in range(min(zone.cantidad, MAX_BOXES_PER_ZONE)):
            box = zone.boxes[i] if i < len(zone.boxes) else Box()
            label = box.label or f"Box {i + 1}"
            items.append((label, (box.address,) if box.pollable else (), box))

    out: List[DisplayValue] = []
    for label, addrs, box in items:
        if not box.enabled or not addrs:
            out.append(DisplayValue(label, placeholder(decimals), box.enabled, box.origen))
            continue
        if None in addrs:
            # дробный индекс: устройство ответило, но такого регистра нет
            raw = _MISSING if blocks.get(zone.registrador_id) else None
        else:
            raw = _raw_for_addresses(blocks, zone.registrador_id, addrs)
        if raw is _MISSING:
            _report(on_error, TransformError(
                f"Регистр {addrs} отсутствует в ответе {zone.registrador_id}", "registro"))
            out.append(DisplayValue(label, ERROR_TEXT, True, box.origen))
            continue
        value = transform(raw, box, transformers, decimals, on_error)
        if isinstance(value, str):
            out.append(DisplayValue(label, value, True, box.origen))
        else:
            out.append(DisplayValue(label, format_value(value, decimals), True, box.origen, value))
    return out


def derive_feeder_values(
    zones: Mapping[str, ResolvedZone],
    blocks: Iterable[RegisterBlock],
    transformers: Optional[TransformerLookup] = None,
    functions: Optional[Callable[[ResolvedZone], Optional[TemplateFunction]]] = None,
    decimals: Optional[int] = DEFAULT_DECIMALS,
    on_error: ErrorCallback = None,
) -> Dict[BoxKey, DisplayValue]:
    """{(зона, индекс_бокса): DisplayValue} для всей карточки."""
    by_device = index_blocks(blocks)
    out: Dict[BoxKey, DisplayValue] = {}
    for name, zone in zones.items():
        function = functions(zone) if (functions and zone.schema == SCHEMA_TARJETA) else None
        for i, dv in enumerate(derive_zone_values(zone, by_device, transformers, function, decimals, on_error)):
            out[(name, i)] = dv
    return out
