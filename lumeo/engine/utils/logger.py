import logging

from lumeo.common.utils.logger import JSONFormatter, LogBuffer

# Engine-wide logger. Records always land in `log_buffer` (served by GET /logs);
# console output is configured by the entrypoints through `setup_logger`.
logger = logging.getLogger("lumeo.engine")
logger.setLevel(logging.INFO)

log_buffer = LogBuffer()
log_buffer.setFormatter(JSONFormatter())
logger.addHandler(log_buffer)
