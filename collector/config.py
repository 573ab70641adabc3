# collector/config.py

DEFAULT_MODBUS_PORT = 502
DEFAULT_UNIT_ID = 1
DEFAULT_TIMEOUT = 3.0  # seconds, per Modbus request

# Collection scheduling
MIN_INTERVAL_MS = 100
DEFAULT_INTERVAL_MS = 1000
HISTORY_SIZE = 100         # batches kept in memory for display
READ_TIMEOUT = 10.0        # seconds allowed for one whole-cycle read
SINK_TIMEOUT = 5.0         # seconds allowed for one CSV append

# Holding register address space (1-based)
MIN_ADDRESS = 1
MAX_ADDRESS = 65535
MAX_RANGE_LENGTH = 120
LARGE_RANGE_WARNING = 100

OUTPUT_DIR = "output"
RANGE_FILE_VERSION = "1.0"
DATABASE_FILE = "ranges.db"
