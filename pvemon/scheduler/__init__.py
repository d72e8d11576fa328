"""
Scheduler module initialization.
"""

from .scheduler import (
    TickResult,
    CollectionScheduler,
    create_alert_system,
    start_alert_system
)

__all__ = [
    'TickResult',
    'CollectionScheduler',
    'create_alert_system',
    'start_alert_system'
]
