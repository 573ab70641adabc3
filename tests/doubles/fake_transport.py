"""Fake transport answering holding register reads from an in-memory map."""

import threading
from typing import Dict, List, Optional, Set

from collector.errors import TransportError
from collector.models import RangeRead


class FakeTransport:
    """
    Serves ``registers[address]`` (default 0) for every requested range.

    Attributes:
        registers: address -> word
        failing_starts: range starts that answer with a device error
        fail_all: raise TransportError for the whole call
        delay: optional Event the read waits on (simulates a slow device)
        calls: requests seen, one list per read_ranges call
    """

    def __init__(self, registers: Optional[Dict[int, int]] = None):
        self.registers: Dict[int, int] = dict(registers or {})
        self.failing_starts: Set[int] = set()
        self.fail_all = False
        self.delay: Optional[threading.Event] = None
        self.calls: List[list] = []
        self.closed = False
        self.connected = True

    def connect(self) -> bool:
        self.connected = True
        return True

    def close(self) -> None:
        self.closed = True

    def read_block(self, start: int, count: int) -> List[int]:
        return [self.registers.get(start + i, 0) for i in range(count)]

    def read_ranges(self, requests):
        self.calls.append(list(requests))
        if self.delay is not None:
            self.delay.wait(5)
        if self.fail_all:
            raise TransportError("Connection refused")
        out = []
        for req in requests:
            if req.start in self.failing_starts:
                out.append(RangeRead(request=req, error="Illegal data address"))
            else:
                out.append(RangeRead(request=req, words=self.read_block(req.start, req.count)))
        return out
