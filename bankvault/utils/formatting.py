"""
Human-readable formatting helpers.
"""

SIZE_UNITS = ['B', 'KB', 'MB', 'GB', 'TB']


def format_size(size_bytes: int) -> str:
    """
    Format a byte count, e.g. 1536 -> '1.50 KB'.

    Args:
        size_bytes: Non-negative number of bytes

    Returns:
        Size with two decimals and a binary (1024) unit
    """
    if size_bytes <= 0:
        return '0 B'

    size = float(size_bytes)
    index = 0
    while size >= 1024 and index < len(SIZE_UNITS) - 1:
        size /= 1024
        index += 1

    return f"{size:.2f} {SIZE_UNITS[index]}"
