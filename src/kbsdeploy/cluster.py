"""
The capabilities the deployment needs from a Kubernetes cluster.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ServiceEndpoint:
    """
    The cluster-internal address of a Service.
    """

    ip: str
    port: int

    def __str__(self) -> str:
        return f"{self.ip}:{self.port}"


class ClusterClient(ABC):
    """
    Interface for the operations performed against the cluster while deploying the KBS. The deployment logic only
    talks to the cluster through this interface, so it can be run against a fake in tests.
    """

    @abstractmethod
    def apply_kustomization(self, directory: Path) -> None:
        """
        Build the kustomization in *directory* and apply it.

        Raises:
            KubectlError: If the resources could not be applied.
        """

    @abstractmethod
    def delete_kustomization(self, directory: Path) -> None:
        """
        Delete the resources of the kustomization in *directory*. Resources that do not exist are ignored.

        Raises:
            KubectlError: If the resources could not be deleted.
        """

    @abstractmethod
    def get_pod_phases(self, namespace: str, selector: str) -> dict[str, str]:
        """
        Return a map from pod name to pod phase for the pods matching the label *selector*.
        """

    @abstractmethod
    def get_service_endpoint(self, namespace: str, name: str) -> ServiceEndpoint | None:
        """
        Return the cluster IP and first port of a Service, or `None` if it does not exist.
        """

    @abstractmethod
    def get_ingress_host(self, namespace: str, name: str) -> str | None:
        """
        Return the host of the first rule of an Ingress, or `None` if it does not exist.
        """

    @abstractmethod
    def run_pod(self, name: str, image: str, command: list[str], namespace: str | None = None) -> None:
        """
        Start a single-use pod that is not restarted once its command exits.
        """

    @abstractmethod
    def get_pod_logs(self, name: str, namespace: str | None = None) -> str:
        """
        Return the logs of a pod, or an empty string if they are not available (yet).
        """

    @abstractmethod
    def delete_pod(self, name: str, namespace: str | None = None) -> None:
        """
        Delete a pod. Deleting a pod that does not exist is not an error.
        """

    @abstractmethod
    def describe(self, namespace: str, what: list[str]) -> str:
        """
        Return human readable diagnostics, e.g. `describe(ns, ["describe", "pod", "-l", "app=kbs"])`. Failures are
        reported in the returned text instead of raising.
        """
