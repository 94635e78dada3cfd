# relaywatch/controllers/puesto_controller.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List

from PySide6.QtCore import QObject, Signal

from relaywatch.entities import ZONES
from relaywatch.polling.eligibility import can_poll
from relaywatch.polling.scheduler import PollScheduler
from relaywatch.state.catalog import Catalog

log = logging.getLogger(__name__)


class MasterState(str, Enum):
    DISABLED = "disabled"
    START = "start"
    STOP = "stop"


class StationController(QObject):
    """
    Общая кнопка пуэсто: запустить / остановить опрос всех алиментадоров.
    Состояние не хранится, а выводится из планировщика при каждом вызове.
    """
    masterStateChanged = Signal(str, str)   # station_id, MasterState.value

    def __init__(self, catalog: Catalog, scheduler: PollScheduler, parent=None):
        super().__init__(parent)
        self.catalog = catalog
        self.scheduler = scheduler

    # ------------------- Состояние -------------------
    def feeder_state(self, feeder_id: str) -> MasterState:
        if self.scheduler.is_polling(feeder_id):
            return MasterState.STOP
        feeder = self.catalog.get_feeder(feeder_id)
        if feeder is not None and can_poll(feeder):
            return MasterState.START
        return MasterState.DISABLED

    def master_state(self, station_id: str) -> MasterState:
        feeders = self.catalog.feeders_in_station(station_id)
        if any(self.scheduler.is_polling(f.id) for f in feeders):
            return MasterState.STOP
        if any(can_poll(f) for f in feeders):
            return MasterState.START
        return MasterState.DISABLED

    def zone_descriptions(self, feeder_id: str) -> Dict[str, str]:
        """Подписи регистраторов по зонам: "Nombre - ip:puerto | Reg: a-b" или "Sin asignar"."""
        feeder = self.catalog.get_feeder(feeder_id)
        if feeder is None:
            return {}
        return {z: self.catalog.describe_zone_device(feeder, z) for z in ZONES}

    # ------------------- Команды -------------------
    def start_all(self, station_id: str) -> List[str]:
        started = []
        for feeder in self.catalog.feeders_in_station(station_id):
            if self.scheduler.is_polling(feeder.id) or not can_poll(feeder):
                continue
            if self.scheduler.start(feeder.id):
                started.append(feeder.id)
        log.info("Puesto %s: started %d feeders", station_id, len(started))
        self._emit_state(station_id)
        return started

    def stop_all(self, station_id: str) -> List[str]:
        stopped = [f.id for f in self.catalog.feeders_in_station(station_id) if self.scheduler.stop(f.id)]
        log.info("Puesto %s: stopped %d feeders", station_id, len(stopped))
        self._emit_state(station_id)
        return stopped

    def toggle(self, station_id: str) -> MasterState:
        if self.master_state(station_id) is MasterState.STOP:
            self.stop_all(station_id)
        else:
            self.start_all(station_id)
        return self.master_state(station_id)

    def toggle_feeder(self, feeder_id: str) -> MasterState:
        if self.scheduler.is_polling(feeder_id):
            self.scheduler.stop(feeder_id)
        else:
            self.scheduler.start(feeder_id)
        return self.feeder_state(feeder_id)

    # ------------------- Внутреннее -------------------
    def _emit_state(self, station_id: str) -> None:
        self.masterStateChanged.emit(station_id, self.master_state(station_id).value)
