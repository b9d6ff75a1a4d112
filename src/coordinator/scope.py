"""
Scope resolution for the calling layer.

The coordinator only sees ObjectRefs. Whatever watches the managed objects
uses a ScopeResolver to derive (domain, tier, name) from a raw object and
then calls the matching schedule entry point.
"""

import logging
from typing import Any, Mapping, Optional, Protocol

from .entities import ObjectRef, Tier
from .errors import ScopeResolutionError


logger = logging.getLogger(__name__)


# Access-control instance: roles before grants, grants before users
DEFAULT_KIND_TIERS: dict[str, Tier] = {
    "Neo4jRole": Tier.TIER1,
    "Neo4jGrant": Tier.TIER2,
    "Neo4jUser": Tier.TIER3,
}


class ScopeResolver(Protocol):
    """Derives the ObjectRef of a raw managed object."""

    def resolve(self, obj: Mapping[str, Any]) -> ObjectRef:
        ...


class KindScopeResolver:
    """
    Resolves manifest-style objects.

    - tier from the object's kind
    - domain from spec.<domain_field> (clusterRef by default)
    - name as "<namespace>/<name>" from metadata, or just the name when the
      object has no namespace
    """

    def __init__(
        self,
        kind_tiers: Optional[Mapping[str, Tier]] = None,
        domain_field: str = "clusterRef",
    ):
        self.kind_tiers = dict(kind_tiers or DEFAULT_KIND_TIERS)
        self.domain_field = domain_field

    def resolve(self, obj: Mapping[str, Any]) -> ObjectRef:
        """
        Raises:
            ScopeResolutionError: Not an object, unknown kind, or missing or
                non-string name, namespace or domain
        """
        if not isinstance(obj, Mapping):
            raise ScopeResolutionError(f"Expected an object, got {type(obj).__name__}")

        kind = obj.get("kind")
        if not isinstance(kind, str) or kind not in self.kind_tiers:
            raise ScopeResolutionError(f"Unsupported kind: {kind!r}")

        metadata = _section(obj, "metadata", kind)
        name = metadata.get("name")
        if not name or not isinstance(name, str):
            raise ScopeResolutionError(f"{kind} has no string metadata.name")

        spec = _section(obj, "spec", kind)
        domain = spec.get(self.domain_field)
        if not domain or not isinstance(domain, str):
            raise ScopeResolutionError(
                f"{kind} {name} has no string spec.{self.domain_field}"
            )

        namespace = metadata.get("namespace")
        if namespace is not None and not isinstance(namespace, str):
            raise ScopeResolutionError(f"{kind} {name} has a non-string metadata.namespace")
        qualified = f"{namespace}/{name}" if namespace else name
        return ObjectRef(domain=domain, tier=self.kind_tiers[kind], name=qualified)


def _section(obj: Mapping[str, Any], key: str, kind: str) -> Mapping[str, Any]:
    section = obj.get(key)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ScopeResolutionError(f"{kind} {key} must be an object")
    return section


def route(coordinator, resolver: ScopeResolver, obj: Mapping[str, Any]) -> ObjectRef:
    """
    Resolve obj and schedule it on coordinator.

    Returns:
        The resolved ObjectRef
    """
    ref = resolver.resolve(obj)
    enqueued = coordinator.schedule(ref)
    logger.debug(f"Routed {ref} (enqueued={enqueued})")
    return ref
