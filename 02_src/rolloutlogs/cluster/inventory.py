"""Helpers for Flux inventory entries and REST resource paths."""

from dataclasses import dataclass

# Irregular plurals among kinds that show up in descriptor inventories
_PLURALS = {
    "Endpoints": "endpoints",
}


@dataclass(frozen=True)
class InventoryRef:
    """Object metadata encoded in an inventory entry id."""

    namespace: str
    name: str
    group: str
    kind: str


def parse_inventory_id(entry_id: str) -> InventoryRef:
    """
    Parse a `<namespace>_<name>_<group>_<kind>` inventory id.

    Cluster-scoped objects have an empty namespace and core objects an empty
    group. Colons in names are encoded as a double underscore.

    Raises:
        ValueError: if the id does not have the expected shape
    """
    parts = entry_id.split("_")
    if len(parts) < 4 or not parts[-1]:
        raise ValueError(f"Malformed inventory id: {entry_id!r}")

    name = "_".join(parts[1:-2]).replace("__", ":")
    if not name:
        raise ValueError(f"Malformed inventory id: {entry_id!r}")

    return InventoryRef(
        namespace=parts[0],
        name=name,
        group=parts[-2],
        kind=parts[-1],
    )


def plural_for(kind: str) -> str:
    """Lower-case plural resource name for a kind (Deployment -> deployments)."""
    if kind in _PLURALS:
        return _PLURALS[kind]
    lower = kind.lower()
    if lower.endswith("y") and lower[-2:-1] not in ("a", "e", "i", "o", "u"):
        return lower[:-1] + "ies"
    if lower.endswith(("s", "x", "ch", "sh")):
        return lower + "es"
    return lower + "s"


def resource_path(
    group: str, version: str, plural: str, namespace: str | None, name: str | None = None
) -> str:
    """Build the REST path of a collection or a single object."""
    base = f"/api/{version}" if not group else f"/apis/{group}/{version}"
    if namespace:
        base = f"{base}/namespaces/{namespace}"
    path = f"{base}/{plural}"
    if name:
        path = f"{path}/{name}"
    return path
