"""
The ordered set of objects rendered for one Contour
"""

# Standard
from typing import Dict, Iterator, List, Optional

# Local
from ..exceptions import assert_invariant
from ..model import KubeObject, ObjectIdentity, apply_order_key


class DesiredObjectSet:
    """Insertion ordered mapping from identity to desired object. Adding a
    second object with an identity already present is an invariant violation.
    """

    def __init__(self, objects: Optional[List[KubeObject]] = None):
        self._objects: Dict[ObjectIdentity, KubeObject] = {}
        for obj in objects or []:
            self.add(obj)

    def add(self, obj: KubeObject):
        """Add a single object

        Args:
            obj:  KubeObject
                The object to add

        Raises:
            InvariantError: if an object with the same identity is present
        """
        identity = obj.identity
        assert_invariant(
            identity not in self._objects,
            f"Duplicate rendered object identity: {identity}",
        )
        self._objects[identity] = obj

    def get(self, identity: ObjectIdentity) -> Optional[KubeObject]:
        return self._objects.get(identity)

    def identities(self) -> List[ObjectIdentity]:
        return list(self._objects.keys())

    def in_apply_order(self) -> List[KubeObject]:
        """The objects sorted in dependency order"""
        return sorted(self._objects.values(), key=apply_order_key)

    def workloads(self) -> List[KubeObject]:
        return [obj for obj in self._objects.values() if obj.IS_WORKLOAD]

    def to_dicts(self) -> List[dict]:
        return [obj.body for obj in self._objects.values()]

    def __contains__(self, identity: ObjectIdentity) -> bool:
        return identity in self._objects

    def __iter__(self) -> Iterator[KubeObject]:
        return iter(self._objects.values())

    def __len__(self) -> int:
        return len(self._objects)
