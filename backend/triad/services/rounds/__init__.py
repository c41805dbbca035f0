"""Round domain services: phase machine, scoring, persistence and timers.

``machine`` is pure; ``store`` persists its transitions; ``flow`` ties the
machine to the AI oracle; ``scheduler`` ends discussions on a timer.
HTTP routes and socket handlers import from here, keeping transport
concerns separated from core game mechanics.
"""
