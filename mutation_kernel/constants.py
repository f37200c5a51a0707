"""
Mutation Kernel — Threshold Constants (Default Values)

All magic numbers live here as module-level defaults.
Runtime constants are injected via InitializeConstants event
and stored in MutationState.constants (MutationConstants).
"""

# --- Debounce ---
DEBOUNCE_DELAY_MS: int = 100

# --- Quantity bounds for multi-unit entities ---
QUANTITY_MIN: int = 1
QUANTITY_MAX: int = 500

# Character attribute carrying the active drone cap.
MAX_ACTIVE_DRONES_ATTRIBUTE_ID: int = 352
DEFAULT_MAX_ACTIVE: int = 5

# --- Display ---
DISPLAY_FRACTION_DIGITS: int = 2
