from __future__ import annotations


class RelayWatchError(Exception):
    """Базовая ошибка ядра RelayWatch."""


class ConfigError(RelayWatchError):
    """Сохранённая конфигурация не разбирается (не тот тип, мусор в полях)."""


class FormulaError(RelayWatchError):
    """Формула пользователя или TI/TV не разбирается или не вычисляется."""

    def __init__(self, message: str, formula: str = "", position: int | None = None):
        super().__init__(message)
        self.formula = formula
        self.position = position


class TransformError(RelayWatchError):
    """
    Ошибка качества данных при пересчёте значения бокса.
    Никогда не прерывает опрос: значение откатывается на предыдущую стадию.
    """

    def __init__(self, message: str, stage: str, fallback=None):
        super().__init__(message)
        self.stage = stage          # "transformador" | "formula" | "registro"
        self.fallback = fallback


class ModbusReadError(RelayWatchError):
    """Устройство недоступно, таймаут или Modbus-исключение."""

    def __init__(self, message: str, device_id: str | None = None):
        super().__init__(message)
        self.device_id = device_id
