"""
Ingress handlers expose the KBS service outside of the cluster. Each cloud provider has its own way of assigning a
host name to the service, so the handler is chosen by name when deploying.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from kbsdeploy.config import DeployContext


class IngressError(Exception):
    """
    Raised when an ingress handler cannot configure the ingress.
    """


class UnsupportedIngressError(IngressError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"ingress '{name}' handler not implemented")


class IngressHandler(ABC):
    """
    Base class for configuring the ingress of the KBS service for a specific provider.
    """

    @abstractmethod
    def apply(self, context: DeployContext, overlays_dir: Path) -> None:
        """
        Add an ingress resource to the kustomization in *overlays_dir* so that it is deployed along with the KBS.

        Raises:
            IngressError: If the ingress cannot be configured.
        """

        raise NotImplementedError


@dataclass
class IngressRegistry:
    """
    Maps provider names to the handler that configures the ingress for that provider.
    """

    handlers: dict[str, IngressHandler] = field(default_factory=dict)

    @staticmethod
    def default() -> "IngressRegistry":
        """
        Create a registry with all built-in handlers.
        """

        from kbsdeploy.ingress.aks import AksIngressHandler
        from kbsdeploy.tools.azure import AzureCli
        from kbsdeploy.tools.kustomize import Kustomize

        return IngressRegistry(handlers={"aks": AksIngressHandler(AzureCli(), Kustomize())})

    def register(self, name: str, handler: IngressHandler) -> None:
        self.handlers[name] = handler

    def get(self, name: str) -> IngressHandler:
        """
        Raises:
            UnsupportedIngressError: If no handler is registered under *name*.
        """

        try:
            return self.handlers[name]
        except KeyError:
            raise UnsupportedIngressError(name) from None

    def apply(self, name: str, context: DeployContext, overlays_dir: Path) -> None:
        handler = self.get(name)
        logger.info("Configuring ingress with the '{}' handler", name)
        handler.apply(context, overlays_dir)
