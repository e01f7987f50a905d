"""
Storage module for the inversion simulator.

Provides persistence for:
- Run outputs (trajectory, event log, config, summary)
- Top-K ranking stores of scored runs
"""

from .json_storage import JSONStorage, NumpyEncoder, read_json, write_json
from .topk_store import TopKEntry, TopKStore, InsertResult, StoreSet
from .run_output import RunOutputWriter, write_outputs, write_events_csv

__all__ = [
    "JSONStorage",
    "NumpyEncoder",
    "read_json",
    "write_json",
    "TopKEntry",
    "TopKStore",
    "InsertResult",
    "StoreSet",
    "RunOutputWriter",
    "write_outputs",
    "write_events_csv",
]
