"""
This cluster client delegates cluster operations to the openshift library. It
is the one that will be used when the operator is running in the cluster or
outside the cluster making live changes.
"""

# Standard
from contextlib import contextmanager
from typing import Iterator, Optional
import json
import threading

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config, constants
from ..exceptions import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    ExpiredError,
    ThrottledError,
    UnavailableError,
    assert_cluster,
)
from ..exceptions import NotFoundError as ObjectNotFoundError
from ..utils import to_seconds
from .base import ClusterClientBase, ObjectList
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTC")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30


class OpenshiftClusterClient(ClusterClientBase):
    """This client uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(
        self,
        dynamic_client: Optional[DynamicClient] = None,
        request_timeout: Optional[float] = None,
    ):
        """
        Args:
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily from
                the in-cluster config or the local kubeconfig.
            request_timeout:  Optional[float]
                Timeout in seconds applied to every request
        """
        self._client = dynamic_client
        self.request_timeout = request_timeout or to_seconds(config.api_timeout_seconds)

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get(self, api_version, kind, name, namespace=None):
        handle = self._get_resource_handle(kind, api_version)
        try:
            with _translate_errors(f"get {kind}/{name}"):
                return handle.get(
                    name=name,
                    namespace=namespace,
                    _request_timeout=self.request_timeout,
                ).to_dict()
        except ObjectNotFoundError:
            log.debug2("[%s/%s] not found in [%s]", kind, name, namespace)
            return None

    def list(self, api_version, kind, namespace=None, label_selector=None):
        handle = self._get_resource_handle(kind, api_version)
        with _translate_errors(f"list {kind}"):
            list_obj = handle.get(
                namespace=namespace,
                label_selector=label_selector,
                _request_timeout=self.request_timeout,
            ).to_dict()
        items = list_obj.get("items", [])
        # List items do not carry their apiVersion/kind
        for item in items:
            item.setdefault("apiVersion", api_version)
            item.setdefault("kind", kind)
        return ObjectList(
            items=items,
            resource_version=list_obj.get("metadata", {}).get("resourceVersion"),
        )

    def watch(  # pylint: disable=too-many-arguments
        self,
        api_version,
        kind,
        namespace=None,
        label_selector=None,
        resource_version=None,
        timeout_seconds=None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        handle = self._get_resource_handle(kind, api_version)
        watch_manager = Watch()
        try:
            for event_obj in watch_manager.stream(
                handle.get,
                resource_version=resource_version,
                namespace=namespace,
                label_selector=label_selector,
                serialize=False,
                timeout_seconds=int(timeout_seconds or SERVER_WATCH_TIMEOUT),
                _request_timeout=CLIENT_WATCH_TIMEOUT,
            ):
                event_type = event_obj.get("type")
                event_resource = event_obj.get("object") or {}
                if event_type == "ERROR":
                    if event_resource.get("code") == 410:
                        raise ExpiredError(event_resource.get("message", ""))
                    raise ClusterError(f"Watch error for {kind}: {event_resource}")
                if event_type == "BOOKMARK":
                    continue
                event_resource.setdefault("apiVersion", api_version)
                event_resource.setdefault("kind", kind)
                yield KubeWatchEvent(KubeEventType(event_type), event_resource)
                if stop_event is not None and stop_event.is_set():
                    log.debug("Stopping watch for %s/%s", kind, api_version)
                    return
        except client.exceptions.ApiException as exception:
            if exception.status == 410:
                raise ExpiredError(str(exception.reason)) from exception
            raise _translate_api_error(
                exception.status, exception.body, str(exception)
            ) from exception
        except urllib3.exceptions.ReadTimeoutError:
            log.debug4("Watch socket closed for %s/%s", kind, api_version)
        except urllib3.exceptions.ProtocolError:
            log.debug2("Invalid chunk from server for %s/%s", kind, api_version)
        finally:
            watch_manager.stop()

    def create(self, body):
        handle = self._handle_for(body)
        with _translate_errors(f"create {body.get('kind')}"):
            return handle.create(
                body=body,
                namespace=body.get("metadata", {}).get("namespace"),
                field_manager=constants.FIELD_MANAGER,
                _request_timeout=self.request_timeout,
            ).to_dict()

    def update(self, body):
        handle = self._handle_for(body)
        with _translate_errors(f"update {body.get('kind')}"):
            return handle.replace(
                body=body,
                namespace=body.get("metadata", {}).get("namespace"),
                field_manager=constants.FIELD_MANAGER,
                _request_timeout=self.request_timeout,
            ).to_dict()

    def update_status(self, body):
        handle = self._handle_for(body)
        with _translate_errors(f"update status {body.get('kind')}"):
            return handle.status.replace(
                body=body,
                namespace=body.get("metadata", {}).get("namespace"),
                field_manager=constants.FIELD_MANAGER,
                _request_timeout=self.request_timeout,
            ).to_dict()

    def delete(self, api_version, kind, name, namespace=None, uid=None):
        handle = self._get_resource_handle(kind, api_version)
        delete_options = {"propagationPolicy": "Background"}
        if uid:
            delete_options["preconditions"] = {"uid": uid}
        try:
            with _translate_errors(f"delete {kind}/{name}"):
                handle.delete(
                    name=name,
                    namespace=namespace,
                    body=delete_options,
                    _request_timeout=self.request_timeout,
                )
        except ObjectNotFoundError:
            log.debug2("[%s/%s] already deleted", kind, name)
            return False
        return True

    ## Implementation Details ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            return DynamicClient(kubernetes.client.ApiClient(kube_config))
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _handle_for(self, body: dict) -> Resource:
        return self._get_resource_handle(body.get("kind"), body.get("apiVersion"))

    def _get_resource_handle(self, kind: str, api_version: str) -> Resource:
        """Get the openshift resource handle for a specified kind and api_version"""
        resource_handle = None
        try:
            resource_handle = self.client.resources.get(
                kind=kind, api_version=api_version
            )
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug("No unique resource found for [%s/%s]", api_version, kind)
        except urllib3.exceptions.HTTPError as err:
            raise UnavailableError(f"Discovery failed for {kind}: {err}") from err
        assert_cluster(
            resource_handle is not None,
            f"Failed to fetch resource handle for {api_version}/{kind}",
        )
        return resource_handle


@contextmanager
def _translate_errors(operation: str):
    """Map openshift and transport errors onto the operator's exception
    taxonomy
    """
    try:
        yield
    except NotFoundError as err:
        raise ObjectNotFoundError(f"{operation}: not found") from err
    except DynamicApiError as err:
        raise _translate_api_error(
            err.status, err.body, f"{operation}: {err.summary()}"
        ) from err
    except urllib3.exceptions.HTTPError as err:
        raise UnavailableError(f"{operation}: {err}") from err


def _translate_api_error(status: int, body, message: str) -> Exception:
    """Build the operator exception for an API error status"""
    if status == 404:
        return ObjectNotFoundError(message)
    if status == 409:
        reason = ""
        try:
            reason = json.loads(body or "{}").get("reason", "")
        except (TypeError, ValueError):
            log.debug4("Unparsable conflict body: %s", body)
        if reason == "AlreadyExists":
            return AlreadyExistsError(message)
        return ConflictError(message)
    if status == 410:
        return ExpiredError(message)
    if status == 429:
        return ThrottledError(message)
    if status is not None and status >= 500:
        return UnavailableError(message)
    return ClusterError(message)
