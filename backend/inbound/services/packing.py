"""Container packing plan for a received line item.

    pack(quantity, package_count) -> [units in container 1, container 2, …]

  - package_count == 0 or quantity <= 1  → no containers
  - package_count == 1                   → one container with every unit
  - package_count >= 2                   → split as evenly as possible,
    larger containers first; never more containers than units, never an
    empty container

Examples:
    pack(5, 2)   == [3, 2]
    pack(7, 3)   == [3, 2, 2]
    pack(10, 20) == [1] * 10
"""


def pack(quantity: int, package_count: int) -> list[int]:
    if quantity < 0 or package_count < 0:
        raise ValueError("quantity and package_count must not be negative")

    if package_count == 0 or quantity <= 1:
        return []
    if package_count == 1:
        return [quantity]

    containers = min(package_count, quantity)
    base, extra = divmod(quantity, containers)
    return [base + 1 if i < extra else base for i in range(containers)]


def split_units(units: list, plan: list[int]) -> list[list]:
    """Slice `units` into consecutive groups sized by a packing plan."""
    groups = []
    start = 0
    for size in plan:
        groups.append(units[start:start + size])
        start += size
    return groups
