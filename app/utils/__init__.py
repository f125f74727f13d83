"""
Utility modules for the peer-connect service.
"""
from .logging_config import setup_logging, log_performance, LogContext

__all__ = ['setup_logging', 'log_performance', 'LogContext']
