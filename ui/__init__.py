"""UI layer -- Rich dashboard."""

from .dashboard import (
    ProgressDisplay,
    console,
    create_histogram,
    print_error,
    print_header,
    print_history,
    print_result,
    print_server_list,
)

__all__ = [
    "ProgressDisplay",
    "console",
    "create_histogram",
    "print_error",
    "print_header",
    "print_history",
    "print_result",
    "print_server_list",
]
