"""
System-wide constants for the dashboard state layer.

Centralizes magic numbers used across the reconciliation modules.
"""

# Default traded universe (pre-seeded into the canonical state)
UNIVERSE = [
    "BTCUSD", "ETHUSD", "NAS100", "SP500", "TSLA",
    "USOIL", "XAGUSD", "XPTUSD", "XAUUSD",
]

# HMA periods shown for a symbol before the engine reports anything
DEFAULT_HMA_PERIODS = (15, 30, 60, 120, 240)

# Ledger caps
HISTORY_CAP = 1000
LOGS_CAP = 2000
EQUITY_SAMPLE_CAP = 50

# Transport timers (seconds)
INACTIVITY_TIMEOUT_SECONDS = 30.0
DISCONNECT_GRACE_SECONDS = 3.0
RECONNECT_DELAY_SECONDS = 2.0
CONNECT_DELAY_SECONDS = 1.0
HANDSHAKE_TIMEOUT_SECONDS = 30.0
DEBUG_PACKET_COUNT = 10

# Fallback PnL scaling (points-like units, not a currency conversion)
PNL_POINTS_SCALE = 10_000

# Epoch values above this are milliseconds
EPOCH_MILLIS_THRESHOLD = 1e11

# Header the reverse-tunnel intermediary needs to skip its interstitial page
TUNNEL_SKIP_HEADER = {"ngrok-skip-browser-warning": "69420"}

# Default labels
DEFAULT_STRATEGY_NAME = "Initialising..."
DEFAULT_ACTIVE_REASON = "Auto HMA"
CANCELLED_REASON = "Cancelled / Expired"

# Logging
TIME_DISPLAY_FORMAT = "%H:%M:%S"
