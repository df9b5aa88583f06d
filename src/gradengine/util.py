"""Small helpers shared by the scalar and device paths"""


def round_up(desired: int, group_size: int) -> int:
    """Round a work size up to the nearest multiple of the group size.

    Args:
        desired: Number of work items actually needed
        group_size: Parallel group granularity of the device

    Returns:
        Smallest multiple of group_size that is >= desired

    Raises:
        ValueError: If group_size is not positive or desired is negative
    """
    if group_size <= 0:
        raise ValueError(f"group_size must be positive, got {group_size}")
    if desired < 0:
        raise ValueError(f"desired must be non-negative, got {desired}")

    remainder = desired % group_size
    if remainder == 0:
        return desired
    return desired + group_size - remainder
