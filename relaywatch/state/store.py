# relaywatch/state/store.py
import datetime

from PySide6.QtCore import QObject, Signal


class ValueStore(QObject):
    """
    Хранит последние опубликованные значения алиментадоров, счётчики чтений,
    признак проблемы связи и текст последней ошибки.
    Уведомляет подписчиков сигналами (UI, лог, тесты).
    """
    valuesChanged = Signal(str, object)
    connectionChanged = Signal(str, bool)
    errorText = Signal(str, str)

    def __init__(self, parent=None):
        super().__init__(parent)
        self.values = {}
        self.read_counts = {}
        self.last_read_at = {}
        self.connection_ok = {}
        self.last_error = {}

    def set_values(self, feeder_id: str, values):
        # последняя запись побеждает, без слияния со старыми значениями
        self.values[feeder_id] = dict(values)
        self.read_counts[feeder_id] = self.read_counts.get(feeder_id, 0) + 1
        self.last_read_at[feeder_id] = datetime.datetime.now(datetime.timezone.utc)
        self.valuesChanged.emit(feeder_id, self.values[feeder_id])

    def set_connection(self, feeder_id: str, ok: bool):
        if self.connection_ok.get(feeder_id) != ok:
            self.connection_ok[feeder_id] = ok
            self.connectionChanged.emit(feeder_id, ok)
        if ok:
            self.last_error.pop(feeder_id, None)

    def set_error(self, feeder_id: str, msg: str):
        self.last_error[feeder_id] = msg
        self.errorText.emit(feeder_id, msg)

    def values_for(self, feeder_id: str):
        return dict(self.values.get(feeder_id, {}))

    def has_problem(self, feeder_id: str) -> bool:
        return self.connection_ok.get(feeder_id) is False

    def clear(self, feeder_id: str):
        for d in (self.values, self.read_counts, self.last_read_at, self.connection_ok, self.last_error):
            d.pop(feeder_id, None)
