"""
This defines the base class for all cluster clients. A cluster client is the
explicit handle through which every component reads and writes cluster state.
"""

# Standard
from dataclasses import dataclass, field
from typing import Iterator, List, Optional
import abc
import threading

# Local
from ..model import KubeObject, ObjectIdentity
from .kube_event import KubeWatchEvent


@dataclass
class ObjectList:
    """The result of a list call: the items plus the collection resourceVersion
    to start a watch from
    """

    items: List[dict] = field(default_factory=list)
    resource_version: Optional[str] = None


class ClusterClientBase(abc.ABC):
    """
    Base class for cluster clients. All failures are raised as subclasses of
    OperatorError:

    * NotFoundError: the object does not exist
    * AlreadyExistsError: create of an existing object
    * ConflictError: resourceVersion or uid precondition mismatch
    * ThrottledError: the server rate limited the request
    * UnavailableError: the server could not be reached or timed out
    * ExpiredError: a watch resourceVersion is too old
    * ClusterError: any other failure
    """

    @abc.abstractmethod
    def get(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
    ) -> Optional[dict]:
        """Fetch a single object

        Args:
            api_version:  str
                The api version of the object
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object, None for cluster scoped objects

        Returns:
            current_state:  Optional[dict]
                The dict representation of the object, or None if it does not
                exist
        """

    @abc.abstractmethod
    def list(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> ObjectList:
        """List objects of a kind, optionally filtered by namespace and label
        selector

        Returns:
            object_list:  ObjectList
                The matching objects and the resourceVersion of the collection
        """

    @abc.abstractmethod
    def watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream change events for a kind. Events with a resourceVersion newer
        than the given one are yielded until the timeout elapses or the stop
        event is set.

        Raises:
            ExpiredError: if resource_version is too old to resume from
        """

    @abc.abstractmethod
    def create(self, body: dict) -> dict:
        """Create an object, returning its stored state"""

    @abc.abstractmethod
    def update(self, body: dict) -> dict:
        """Replace an object. If the body carries a resourceVersion that does not
        match the stored one, a ConflictError is raised. Status is not changed.
        """

    @abc.abstractmethod
    def update_status(self, body: dict) -> dict:
        """Replace only the status of an object, with the same resourceVersion
        semantics as update
        """

    @abc.abstractmethod
    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        uid: Optional[str] = None,
    ) -> bool:
        """Delete an object. If uid is given, the delete only applies to the
        object with that uid.

        Returns:
            deleted:  bool
                True if a delete was issued, False if the object was already gone
        """

    ## Convenience #############################################################

    def get_identity(self, identity: ObjectIdentity) -> Optional[dict]:
        """Fetch the object with the given identity"""
        return self.get(
            identity.api_version,
            identity.kind,
            identity.name,
            identity.namespace or None,
        )

    def delete_object(self, obj: KubeObject) -> bool:
        """Delete a live object, guarded by its uid"""
        identity = obj.identity
        return self.delete(
            identity.api_version,
            identity.kind,
            identity.name,
            identity.namespace or None,
            uid=obj.uid,
        )
