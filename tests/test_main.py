import json

import main


def test_cli_test_missing_data(capsys):
    assert main.main(["test", "--ip", "", "--cantidad", "5"]) == 1
    out = json.loads(capsys.readouterr().out)
    assert out == {"ok": False, "error": "Faltan datos (ip, puerto, indiceInicial, cantRegistros)"}


def test_cli_run_without_feeders(tmp_path, qapp):
    assert main.main(["run", "--db", str(tmp_path / "vacia.db"), "--mode", "simulado"]) == 1


def test_cli_run_unknown_puesto(tmp_path, qapp):
    assert main.main(["run", "--db", str(tmp_path / "vacia.db"), "--puesto", "p9"]) == 2
