from .logger import hash_identifier, log_scheduling_event

__all__ = ["hash_identifier", "log_scheduling_event"]
