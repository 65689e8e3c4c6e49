"""FleetGate — authorization decision engine for the fleet platform."""

__version__ = "0.1.0"
