"""
Display formatting for costs, token counts and timings.
"""


def format_cost(cost: float, decimals: int = 4) -> str:
    """Format a USD cost for display.

    Zero is shown as "Free" and sub-hundredth-of-a-cent amounts as "<$0.0001".
    """
    if cost == 0:
        return "Free"
    if cost < 0.0001:
        return "<$0.0001"
    return f"${cost:.{decimals}f}"


def format_tokens(tokens: int) -> str:
    """Format a token count with thousands separators."""
    return f"{tokens:,}"


def format_duration(seconds: float) -> str:
    """Format a duration in seconds, switching to milliseconds below one second."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    return f"{seconds:.2f}s"
