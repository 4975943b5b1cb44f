from dataclasses import dataclass
from pathlib import Path
from string import Template

from loguru import logger

from kbsdeploy.config import DeployContext
from kbsdeploy.ingress import IngressError, IngressHandler
from kbsdeploy.tools.azure import AzureCli
from kbsdeploy.tools.fs import replace_text
from kbsdeploy.tools.gha import group
from kbsdeploy.tools.kustomize import Kustomize


@dataclass
class AksIngressHandler(IngressHandler):
    """
    Exposes the KBS through the HTTP application routing add-on of Azure Kubernetes Service. The add-on provides a
    DNS zone for the cluster, and the service is made available as `kbs.<zone>`.
    """

    azure: AzureCli
    kustomize: Kustomize

    INGRESS_CLASS = "addon-http-application-routing"
    INGRESS_FILE = "ingress.yaml"

    def apply(self, context: DeployContext, overlays_dir: Path) -> None:
        if context.cluster is None:
            raise IngressError("the cluster identity is required to configure an AKS ingress")

        rg, name = context.cluster.resource_group, context.cluster.name
        dns_zone = self.azure.get_dns_zone(rg, name)

        # The cluster may not have the HTTP application routing add-on yet.
        if not dns_zone:
            with group("Enable HTTP application routing add-on"):
                self.azure.enable_http_application_routing(rg, name)
            dns_zone = self.azure.get_dns_zone(rg, name)

        if not dns_zone:
            raise IngressError("the DNS zone name is nil, it cannot configure Ingress")

        ingress_file = overlays_dir / self.INGRESS_FILE
        with group(str(ingress_file)):
            content = render_template(
                ingress_file.read_text(),
                KBS_INGRESS_CLASS=self.INGRESS_CLASS,
                KBS_INGRESS_HOST=f"kbs.{dns_zone}",
            )
            print(content)
        replace_text(ingress_file, content)
        logger.info("Ingress host set to 'kbs.{}'", dns_zone)

        self.kustomize.add_resource(overlays_dir, self.INGRESS_FILE)


def render_template(template: str, **variables: str) -> str:
    """
    Substitute `$NAME` and `${NAME}` placeholders in the same way `envsubst` does. Placeholders for variables that
    are not given are left as they are.
    """

    return Template(template).safe_substitute(variables)
