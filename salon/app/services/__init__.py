"""Service package exports.

Pure scheduling helpers (working hours, slot grid, booking flow) are safe to
import anywhere; ``booking_services`` is the DB-backed layer used by the API.
"""

from . import booking_flow, slots, working_hours

__all__ = ["booking_flow", "slots", "working_hours"]
