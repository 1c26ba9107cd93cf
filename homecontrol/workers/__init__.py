"""
Workers module for the background scheduler.

This module contains:
- unified_scheduler: time-trigger scheduler shared by every controller
- engine_cli: command-line entry point that runs the engine
"""

__all__ = ["UnifiedScheduler"]

from homecontrol.workers.unified_scheduler import UnifiedScheduler
