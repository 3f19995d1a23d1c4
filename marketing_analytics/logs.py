"""
Logging helpers shared by every analysis module
===============================================
Terminal-style colored output: [INFO], [SUCCESS], [WARNING], [ERROR].
"""


class LogColors:
    """ANSI color codes for terminal-style logging"""
    BLUE = '\033[94m'      # INFO
    GREEN = '\033[92m'     # SUCCESS
    YELLOW = '\033[93m'    # WARNING
    RED = '\033[91m'       # ERROR
    RESET = '\033[0m'      # Reset to default
    BOLD = '\033[1m'


def log_info(message: str):
    """Log informational messages in blue"""
    print(f"{LogColors.BLUE}[INFO]{LogColors.RESET} {message}")


def log_success(message: str):
    """Log success messages in green"""
    print(f"{LogColors.GREEN}[SUCCESS]{LogColors.RESET} {message}")


def log_warning(message: str):
    """Log warning messages in yellow"""
    print(f"{LogColors.YELLOW}[WARNING]{LogColors.RESET} {message}")


def log_error(message: str, root_cause: str = "", location: str = ""):
    """Log error messages in red with root cause analysis"""
    print(f"{LogColors.RED}[ERROR]{LogColors.RESET} {message}")
    if root_cause:
        print(f"{LogColors.RED}  └─ Root Cause:{LogColors.RESET} {root_cause}")
    if location:
        print(f"{LogColors.RED}  └─ Location:{LogColors.RESET} {location}")


def log_step(title: str):
    """Print a step banner"""
    log_info("=" * 70)
    log_info(title)
    log_info("=" * 70)


def log_header(title: str):
    """Print a bold pipeline banner"""
    log_info(f"\n{LogColors.BOLD}{'='*70}{LogColors.RESET}")
    log_info(f"{LogColors.BOLD}{title}{LogColors.RESET}")
    log_info(f"{LogColors.BOLD}{'='*70}{LogColors.RESET}\n")
