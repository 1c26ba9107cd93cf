"""
Control Loops Package
=====================

Timer-driven controllers for the three household devices:
- PumpController: daily pool pump duty cycle sized from outdoor temperature
- IrrigationController: advisor-driven multi-zone sprinkler watering
- ClimateController: thermostat setpoint steering toward a room target

Each controller registers its triggers with the shared UnifiedScheduler and
writes one job row per actuator session to the job store.
"""

from homecontrol.control_loops.climate_controller import ClimateController
from homecontrol.control_loops.irrigation_controller import IrrigationController
from homecontrol.control_loops.pump_controller import PumpController
from homecontrol.control_loops.rate_tracker import RateTracker

__all__ = [
    "ClimateController",
    "IrrigationController",
    "PumpController",
    "RateTracker",
]
