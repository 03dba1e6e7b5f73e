"""EndpointSlice bookkeeping: topology hints, slice tracking, trigger times and helpers."""

__version__ = "0.1.0"
__all__ = [
    "models",
    "hints",
    "topology",
    "controller_utils",
    "endpoint_set",
    "slice_tracker",
    "trigger_time",
]