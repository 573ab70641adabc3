from __future__ import annotations

import logging
from typing import List, Sequence

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from collector.config import DEFAULT_MODBUS_PORT, DEFAULT_TIMEOUT, DEFAULT_UNIT_ID
from collector.errors import TransportError
from collector.models import RangeRead, ReadRequest

log = logging.getLogger(__name__)

# Largest block a single Read Holding Registers request may return.
MAX_READ_COUNT = 125


class ModbusTcpTransport:
    """
    Holding register reader for one Modbus-TCP device.

    Register addresses are passed to the device exactly as configured.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_MODBUS_PORT,
        unit: int = DEFAULT_UNIT_ID,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.unit = unit
        self.timeout = timeout
        self._client = ModbusTcpClient(host, port=port, timeout=timeout)

    # ------------- lifecycle -------------

    def connect(self) -> bool:
        ok = self._client.connect()
        if ok:
            log.info("Connected to %s:%s (unit/device_id %s)", self.host, self.port, self.unit)
        else:
            log.warning("TCP connect to %s:%s failed", self.host, self.port)
        return ok

    def close(self) -> None:
        self._client.close()

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    def __enter__(self) -> "ModbusTcpTransport":
        if not self.connect():
            raise TransportError(f"Could not connect to {self.host}:{self.port}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def describe(self) -> str:
        return f"{self.host}:{self.port} unit={self.unit} timeout={self.timeout}s"

    # ------------- reads -------------

    def read_block(self, start: int, count: int) -> List[int]:
        """
        Read ``count`` holding registers starting at ``start``.

        Device exceptions raise ModbusException; a dropped connection raises
        ConnectionException.
        """
        if count < 1 or count > MAX_READ_COUNT:
            raise ModbusException(f"Register count {count} outside 1..{MAX_READ_COUNT}")

        rr = self._client.read_holding_registers(address=start, count=count, device_id=self.unit)
        if rr.isError():
            raise ModbusException(f"Read error at {start} (count={count}): {rr}")

        regs = list(rr.registers[:count])
        if len(regs) < count:
            raise ModbusException(f"Short read at {start}: expected {count} words, got {len(regs)}")
        return regs

    def read_ranges(self, requests: Sequence[ReadRequest]) -> List[RangeRead]:
        """
        Read every request in order.

        A device error on one range is recorded on that range and the rest
        are still read. A lost connection or a request left unanswered
        fails the whole call with TransportError.
        """
        if not self._client.connected and not self._client.connect():
            raise TransportError(f"Device {self.host}:{self.port} is not reachable")

        out: List[RangeRead] = []
        for req in requests:
            try:
                words = self.read_block(req.start, req.count)
            except (ConnectionException, ModbusIOException) as e:
                # no answer at all: the device is gone, not just this range
                raise TransportError(f"No response from {self.host}:{self.port}: {e}") from e
            except ModbusException as e:
                log.warning("Range %s+%s failed: %s", req.start, req.count, e)
                out.append(RangeRead(request=req, error=str(e)))
                continue
            log.debug("Range %s+%s -> %s", req.start, req.count, " ".join(f"{w:04X}" for w in words))
            out.append(RangeRead(request=req, words=words))
        return out
