import argparse
import json
import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from relaywatch.db import init_db
from relaywatch.modbus.driver import check_connection
from relaywatch.polling.eligibility import can_poll
from relaywatch.polling.scheduler import PollScheduler, default_fetcher
from relaywatch.controllers.puesto_controller import StationController
from relaywatch.state.catalog import Catalog
from relaywatch.state.store import ValueStore
from resources import DEFAULT_TCP, MODBUS_MODE

log = logging.getLogger("relaywatch")

# Уменьшаем логирование pymodbus (часто печатает повторяющиеся сообщения при отсутствии ответа)
logging.getLogger('pymodbus').setLevel(logging.WARNING)


def _log_values(feeder_id, values):
    parts = [f"{zone}[{i}] {dv.label}={dv.text}" for (zone, i), dv in sorted(values.items())]
    log.info("%s: %s", feeder_id, ", ".join(parts) or "(sin valores)")


def cmd_run(args) -> int:
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    init_db(args.db)
    catalog = Catalog.from_db()

    store = ValueStore()
    store.valuesChanged.connect(_log_values)
    store.errorText.connect(lambda fid, msg: log.error("%s: %s", fid, msg))

    scheduler = PollScheduler(catalog, store, fetch=default_fetcher(args.mode))
    controller = StationController(catalog, scheduler)

    if args.puesto:
        if catalog.get_station(args.puesto) is None:
            log.error("Puesto %s no existe", args.puesto)
            return 2
        started = controller.start_all(args.puesto)
    else:
        started = [f.id for f in catalog.feeders.values() if can_poll(f) and scheduler.start(f.id)]

    if not started:
        log.warning("No hay alimentadores habilitados para consultar")
        return 1

    # Ctrl+C: Qt не отдаёт управление Python, поэтому будим интерпретатор таймером
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    wake = QTimer()
    wake.timeout.connect(lambda: None)
    wake.start(250)

    try:
        return app.exec()
    finally:
        scheduler.shutdown()


def cmd_test(args) -> int:
    result = check_connection(args.ip, args.puerto, args.indice, args.cantidad)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result.get("ok") else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relaywatch", description="Consulta periódica de relés y analizadores Modbus TCP")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log DEBUG")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Consultar alimentadores hasta Ctrl+C")
    run.add_argument("--db", default=None, help="Ruta de la base SQLite (por defecto RW_DB_PATH)")
    run.add_argument("--puesto", default=None, help="Id del puesto; sin él, todos los alimentadores habilitados")
    run.add_argument("--mode", choices=("real", "simulado"), default=MODBUS_MODE)
    run.set_defaults(func=cmd_run)

    test = sub.add_parser("test", help="Probar conexión con un registrador")
    test.add_argument("--ip", default=DEFAULT_TCP["host"])
    test.add_argument("--puerto", type=int, default=int(DEFAULT_TCP["port"]))
    test.add_argument("--indice", type=int, default=0, help="Índice inicial")
    test.add_argument("--cantidad", type=int, default=10, help="Cantidad de registros")
    test.set_defaults(func=cmd_test)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
