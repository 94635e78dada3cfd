import pytest
from pymodbus.exceptions import ModbusIOException

from relaywatch.errors import ModbusReadError
from relaywatch.modbus.driver import (
    ModbusFetcher, RegistradorDriver, SimulatedFetcher, check_connection, read_request,
)
from relaywatch.modbus.register_plan import ReadRequest


class FakeResponse:
    def __init__(self, registers=None, error=False):
        self.registers = registers or []
        self._error = error

    def isError(self):
        return self._error


class FakeClient:
    def __init__(self, registers=None, connect_ok=True, error=False, raises=None):
        self.registers = registers if registers is not None else list(range(200))
        self.connect_ok = connect_ok
        self.error = error
        self.raises = raises
        self.calls = []
        self.closed = False

    def connect(self):
        return self.connect_ok

    def close(self):
        self.closed = True

    def read_holding_registers(self, address, count=1, **kwargs):
        self.calls.append((address, count, kwargs))
        if self.raises:
            raise self.raises
        if self.error:
            return FakeResponse(error=True)
        return FakeResponse(self.registers[address:address + count])


def factory_for(client):
    def factory(settings):
        client.settings = settings
        return client
    return factory


REQ = ReadRequest("r1", "10.0.0.5", 502, 7, 10, 3)


def test_read_request_success_and_close():
    client = FakeClient()
    block = read_request(REQ, factory_for(client))
    assert block.device_id == "r1"
    assert block.registers == (10, 11, 12)
    assert client.closed
    assert client.settings == {"host": "10.0.0.5", "port": 502}
    address, count, kwargs = client.calls[0]
    assert (address, count) == (10, 3)
    assert list(kwargs.values()) == [7]


def test_connect_failure():
    client = FakeClient(connect_ok=False)
    with pytest.raises(ModbusReadError) as exc:
        read_request(REQ, factory_for(client))
    assert exc.value.device_id == "r1"
    assert client.closed


def test_error_response():
    with pytest.raises(ModbusReadError):
        read_request(REQ, factory_for(FakeClient(error=True)))


def test_pymodbus_exception_wrapped():
    client = FakeClient(raises=ModbusIOException("no response"))
    with pytest.raises(ModbusReadError):
        ModbusFetcher(factory_for(client))(REQ)
    assert client.closed


def test_short_response():
    with pytest.raises(ModbusReadError):
        read_request(REQ, factory_for(FakeClient(registers=[0] * 11)))


def test_driver_rejects_bad_range():
    driver = RegistradorDriver(FakeClient(), unit_id=1)
    with pytest.raises(ModbusReadError):
        driver.read_block(0, 126)
    with pytest.raises(ModbusReadError):
        driver.read_block(65535, 2)
    assert driver.ping() is True
    assert RegistradorDriver(FakeClient(error=True)).ping() is False


def test_simulated_fetcher():
    block = SimulatedFetcher(seed=1)(REQ)
    assert len(block.registers) == 3
    assert all(0 <= v <= 500 for v in block.registers)


def test_check_connection_ok():
    result = check_connection("10.0.0.5", "502", "0", "4", client_factory=factory_for(FakeClient()))
    assert result == {
        "ok": True, "ip": "10.0.0.5", "puerto": 502, "indiceInicial": 0, "cantRegistros": 4,
        "registros": [0, 1, 2, 3],
    }


def test_check_connection_missing_data():
    result = check_connection("", 502, 0, 10)
    assert result == {"ok": False, "error": "Faltan datos (ip, puerto, indiceInicial, cantRegistros)"}


def test_check_connection_failure():
    result = check_connection("10.0.0.5", 502, 0, 10, client_factory=factory_for(FakeClient(connect_ok=False)))
    assert result["ok"] is False
    assert "10.0.0.5" in result["error"]
