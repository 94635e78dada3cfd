from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Dict, List, Optional

from PySide6.QtCore import QObject, QThreadPool, QTimer, Signal

from relaywatch.errors import ModbusReadError
from relaywatch.modbus.driver import ModbusFetcher, SimulatedFetcher
from relaywatch.modbus.register_plan import ReadRequest, RegisterBlock, plan_read
from relaywatch.polling.eligibility import can_poll, resolve_zones
from relaywatch.polling.transform import derive_feeder_values
from relaywatch.state.catalog import Catalog
from relaywatch.state.store import ValueStore
from resources import DEFAULT_DECIMALES, MODBUS_MODE

log = logging.getLogger(__name__)

Fetcher = Callable[[ReadRequest], RegisterBlock]


def default_fetcher(mode: str = MODBUS_MODE) -> Fetcher:
    if mode == "simulado":
        log.info("Modbus mode: simulado (random values, no network)")
        return SimulatedFetcher()
    return ModbusFetcher()


class PollScheduler(QObject):
    """
    Периодический опрос алиментадоров: один QTimer на алиментадор.
    Таймеры и кэш значений трогаем только из потока планировщика;
    блокирующее чтение Modbus уходит в QThreadPool, результат
    возвращается сигналом (queued) обратно в поток планировщика.
    """
    feederStarted = Signal(str)
    feederStopped = Signal(str)

    # feeder_id, поколение, блоки, {device_id: текст ошибки}
    _fetchFinished = Signal(str, int, object, object)

    def __init__(self, catalog: Catalog, store: ValueStore, fetch: Optional[Fetcher] = None,
                 run_in_pool: bool = True, decimals: int = DEFAULT_DECIMALES,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self.catalog = catalog
        self.store = store
        self.fetch = fetch or default_fetcher()
        self.run_in_pool = run_in_pool
        self.decimals = decimals
        self._pool = QThreadPool(self)
        self._timers: Dict[str, QTimer] = {}
        self._generation: Dict[str, int] = {}
        self._in_flight: Dict[str, int] = {}
        self._next_gen = 0
        self._fetchFinished.connect(self._on_fetch_finished)

    # ---------- Публичный API ----------
    def start(self, feeder_id: str) -> bool:
        """Запускает опрос. Непригодный алиментадор: no-op, возвращает False."""
        if feeder_id in self._timers:
            return True
        feeder = self.catalog.get_feeder(feeder_id)
        if feeder is None:
            log.warning("Feeder %s not found, polling not started", feeder_id)
            return False
        if not can_poll(feeder):
            log.info("Feeder %s is not eligible for polling", feeder_id)
            return False

        self._next_gen += 1
        gen = self._next_gen
        timer = QTimer(self)
        timer.setInterval(feeder.interval_ms)
        timer.timeout.connect(partial(self._tick, feeder_id, gen))
        self._timers[feeder_id] = timer
        self._generation[feeder_id] = gen
        timer.start()
        # первое чтение сразу, не дожидаясь интервала
        QTimer.singleShot(0, partial(self._tick, feeder_id, gen))

        log.info("Polling started: %s every %d ms", feeder_id, feeder.interval_ms)
        self.feederStarted.emit(feeder_id)
        return True

    def stop(self, feeder_id: str) -> bool:
        timer = self._timers.pop(feeder_id, None)
        if timer is None:
            return False
        timer.stop()
        timer.deleteLater()
        self._generation.pop(feeder_id, None)
        log.info("Polling stopped: %s", feeder_id)
        self.feederStopped.emit(feeder_id)
        return True

    def is_polling(self, feeder_id: str) -> bool:
        return feeder_id in self._timers

    def polling_ids(self) -> List[str]:
        return list(self._timers)

    def stop_all(self) -> None:
        for feeder_id in list(self._timers):
            self.stop(feeder_id)

    def shutdown(self, wait_ms: int = 3000) -> None:
        self.stop_all()
        self._pool.waitForDone(wait_ms)

    # ---------- Внутреннее ----------
    def _tick(self, feeder_id: str, gen: int) -> None:
        if self._generation.get(feeder_id) != gen:
            return
        feeder = self.catalog.get_feeder(feeder_id)
        if feeder is None or not can_poll(feeder):
            log.info("Feeder %s lost eligibility, stopping", feeder_id)
            # свой таймер нельзя удалять изнутри его же timeout: только гасим,
            # а снимаем уже из цикла событий
            self._timers[feeder_id].stop()
            QTimer.singleShot(0, partial(self._stop_if_gen, feeder_id, gen))
            return

        timer = self._timers[feeder_id]
        if timer.interval() != feeder.interval_ms:
            timer.setInterval(feeder.interval_ms)

        if self._in_flight.get(feeder_id) == gen:
            log.debug("Feeder %s: previous read still running, tick skipped", feeder_id)
            return

        requests = plan_read(self.catalog.get_device, resolve_zones(feeder).values())
        self._in_flight[feeder_id] = gen
        job = partial(self._fetch_all, feeder_id, gen, requests)
        if self.run_in_pool:
            self._pool.start(job)
        else:
            job()

    def _stop_if_gen(self, feeder_id: str, gen: int) -> None:
        if self._generation.get(feeder_id) == gen:
            self.stop(feeder_id)

    def _fetch_all(self, feeder_id: str, gen: int, requests: List[ReadRequest]) -> None:
        # выполняется в рабочем потоке: только чтение, никакого общего состояния
        blocks: List[RegisterBlock] = []
        failures: Dict[str, str] = {}
        for rq in requests:
            if rq.device_id in failures:
                continue
            try:
                blocks.append(self.fetch(rq))
            except ModbusReadError as e:
                failures[rq.device_id] = str(e)
            except Exception as e:
                log.exception("Unexpected error reading %s:%s", rq.host, rq.port)
                failures[rq.device_id] = str(e) or type(e).__name__
        self._fetchFinished.emit(feeder_id, gen, blocks, failures)

    def _on_fetch_finished(self, feeder_id: str, gen: int, blocks, failures) -> None:
        if self._in_flight.get(feeder_id) == gen:
            del self._in_flight[feeder_id]
        if self._generation.get(feeder_id) != gen:
            log.debug("Feeder %s: stale read result discarded", feeder_id)
            return
        feeder = self.catalog.get_feeder(feeder_id)
        if feeder is None:
            return

        zones = resolve_zones(feeder)
        if failures:
            msg = "; ".join(f"{dev}: {text}" for dev, text in failures.items())
            log.warning("Feeder %s read failed: %s", feeder_id, msg)
            self.store.set_connection(feeder_id, False)
            self.store.set_error(feeder_id, msg)
            if not blocks:
                return
        else:
            self.store.set_connection(feeder_id, True)

        values = derive_feeder_values(
            zones, blocks,
            transformers=self.catalog.transformer_lookup(),
            functions=self.catalog.function_for_zone,
            decimals=self.decimals,
        )
        if failures:
            # боксы упавших регистраторов сохраняют прошлые значения
            previous = self.store.values_for(feeder_id)
            for key in values:
                if zones[key[0]].registrador_id in failures and key in previous:
                    values[key] = previous[key]
        self.store.set_values(feeder_id, values)
