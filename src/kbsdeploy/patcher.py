from dataclasses import dataclass

from loguru import logger

from kbsdeploy.config import DeployContext
from kbsdeploy.ingress import IngressRegistry
from kbsdeploy.tools.gha import group
from kbsdeploy.tools.kustomize import Kustomize
from kbsdeploy.versions import ServiceDescriptor


@dataclass
class ManifestPatcher:
    """
    Prepares the kustomize manifests of a fresh KBS checkout for deployment.
    """

    kustomize: Kustomize
    ingress: IngressRegistry

    SECRET_FILE = "key.bin"

    def patch(self, context: DeployContext, descriptor: ServiceDescriptor, ingress: str | None = None) -> None:
        """
        Write the placeholder secret, pin the container image and, if requested, add the ingress resource.

        Raises:
            UnsupportedIngressError: If *ingress* names an unknown handler. Nothing is modified in that case.
        """

        config = context.config
        if ingress:
            self.ingress.get(ingress)

        # Tests fill the KBS resources later, but the deployment expects at least one secret at install time.
        secret_file = config.overlays_dir / self.SECRET_FILE
        logger.debug("Writing placeholder secret to '{}'", secret_file)
        secret_file.write_text(f"{config.placeholder_secret}\n")

        with group("Update the kbs container image"):
            logger.info("Setting '{}' to '{}'", config.image_placeholder, descriptor.image_ref)
            self.kustomize.set_image(config.base_dir, config.image_placeholder, descriptor.image_ref)

        if ingress:
            self.ingress.apply(ingress, context, config.overlays_dir)
