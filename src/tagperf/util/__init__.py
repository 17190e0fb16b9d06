from tagperf.util.json import json_dumps, json_loads
from tagperf.util.logging import log_structured_event, new_job_id
from tagperf.util.timing import timed

__all__ = [
    "json_dumps",
    "json_loads",
    "log_structured_event",
    "new_job_id",
    "timed",
]
