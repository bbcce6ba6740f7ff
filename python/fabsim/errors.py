"""
Exceptions raised by the FabSim engines.

The engines never raise for structurally valid input: missing table keys
fall back to the nearest process node and empty component lists produce
zero-valued records. Only genuinely degenerate geometry or configuration
is rejected.
"""


class ValidationError(ValueError):
    """Structurally invalid die, wafer, reticle or simulation configuration."""
