"""Terminal color codes for log differentiation.

Usage:
    from ipguard.shared.log_colors import LogColors

    bt.logging.warning(f"{LogColors.CLIENT_LABEL} rate_limited: ...")
    bt.logging.error(f"{LogColors.GUARD_LABEL} refresh failed: ...")
"""


class LogColors:
    """ANSI terminal colors for differentiating log sources."""

    RESET = "\033[0m"

    # Caller-side events (yellow - external, expected)
    CLIENT = "\033[93m"
    CLIENT_LABEL = f"{CLIENT}[CLIENT]{RESET}"

    # Guard-side issues (red - internal, needs attention)
    GUARD = "\033[91m"
    GUARD_LABEL = f"{GUARD}[GUARD]{RESET}"

    # Persistent store (cyan)
    STORE = "\033[96m"
    STORE_LABEL = f"{STORE}[STORE]{RESET}"

    # Outbound alerts (magenta)
    NOTIFY = "\033[95m"
    NOTIFY_LABEL = f"{NOTIFY}[NOTIFY]{RESET}"

    # Success/info (green)
    SUCCESS = "\033[92m"
    SUCCESS_LABEL = f"{SUCCESS}[OK]{RESET}"
