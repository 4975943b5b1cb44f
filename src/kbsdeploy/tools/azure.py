from dataclasses import dataclass
import shlex
import subprocess

from loguru import logger


@dataclass
class AzureCliError(Exception):
    statuscode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"Azure CLI command failed with status code {self.statuscode}"
        if self.stderr:
            message += f": {self.stderr}"
        return message


class AzureCli:
    """
    Wrapper for the few `az aks` commands needed to expose a service on an AKS cluster.
    """

    HTTP_APPLICATION_ROUTING_ADDON = "http_application_routing"
    DNS_ZONE_QUERY = "addonProfiles.httpApplicationRouting.config.HTTPApplicationRoutingZoneName"

    def _run(self, *args: str) -> str:
        command = ["az", *args]
        logger.debug("$ {command}", command=" ".join(map(shlex.quote, command)))
        status = subprocess.run(command, text=True, capture_output=True)
        if status.returncode:
            raise AzureCliError(status.returncode, status.stderr)
        return status.stdout

    def get_dns_zone(self, resource_group: str, cluster_name: str) -> str:
        """
        Return the DNS zone name of the HTTP application routing add-on, or an empty string if it is not enabled.
        """

        output = self._run(
            "aks",
            "show",
            "-g",
            resource_group,
            "-n",
            cluster_name,
            "--query",
            self.DNS_ZONE_QUERY,
            "-o",
            "tsv",
        )
        return output.strip()

    def enable_http_application_routing(self, resource_group: str, cluster_name: str) -> None:
        self._run(
            "aks",
            "enable-addons",
            "-g",
            resource_group,
            "-n",
            cluster_name,
            "--addons",
            self.HTTP_APPLICATION_ROUTING_ADDON,
        )
