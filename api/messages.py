"""
Centralized repository for all user-facing messages.
"""
from config.constants import DEFAULT_CURRENCY

SERVICE_NAME = "Happy OTP API"
SERVICE_VERSION = "2.0"

# --- Number & OTP Handling ---
NUMBER_PURCHASED = "Number purchased successfully"
TIME_EXPIRED = "Time expired. Number auto-cancelled."
NUMBER_EXPIRED_CANCELLED = "Number expired and auto-cancelled"
NUMBER_CANCELLED = "Number cancelled successfully"

# --- Credentials ---
API_KEY_CHANGED = "API key changed successfully"
OLD_KEY_WARNING = "Old API key is now invalid. Update all your applications immediately."
API_KEY_REQUIRED = "API key required"
API_KEY_REGENERATED = "API key regenerated"
API_KEY_GENERATED = "New API key generated"

# --- Accounts ---
USER_REGISTERED = "User registered successfully"
USER_REMOVED = "User removed successfully"
USER_UPDATED = "User updated successfully"
RESET_LINK_SENT = "Password reset link generated"

# --- Partners ---
PARTNER_REGISTERED = "Partner registered successfully"
WITHDRAWAL_REQUESTED = "Withdrawal requested"
PARTNER_SETTLED = "Pending commission moved to withdrawable balance"
PARTNER_STATUS_UPDATED = "Partner status updated"

# --- Error and System Messages ---
GENERIC_ERROR = "Internal server error"
ENDPOINT_NOT_FOUND = "Endpoint not found"
INVALID_JSON = "Invalid JSON body"


def balance_added(amount: int) -> str:
    return f"{DEFAULT_CURRENCY} {amount} added to user"
