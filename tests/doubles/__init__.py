"""Hand-written collaborators for tests without a Modbus device."""
