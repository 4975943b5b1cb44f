"""
Deploys the KBS onto a Kubernetes cluster and waits until it responds to requests.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from uuid import uuid4

import requests
from loguru import logger

from kbsdeploy.cluster import ClusterClient, ServiceEndpoint
from kbsdeploy.config import ClusterIdentity, DeployContext, KbsConfig
from kbsdeploy.patcher import ManifestPatcher
from kbsdeploy.sources import SourceFetcher
from kbsdeploy.tools.gha import group
from kbsdeploy.tools.kubectl import KubectlError
from kbsdeploy.tools.poll import Clock, ReadinessProbe, SystemClock
from kbsdeploy.versions import ServiceDescriptor, VersionsManifest

# The KBS has no route at `/`, so a 404 is the sign of a healthy service.
EXPECTED_RESPONSE = "404 Not Found"


class DeployState(str, Enum):
    NOT_DEPLOYED = "NotDeployed"
    APPLYING = "Applying"
    WAITING_POD_RUNNING = "WaitingPodRunning"
    WAITING_SERVICE_RESPONSIVE = "WaitingServiceResponsive"
    WAITING_INGRESS_RESPONSIVE = "WaitingIngressResponsive"
    READY = "Ready"
    ERROR = "Error"


@dataclass
class KbsDeployer:
    """
    Runs the deployment pipeline: resolve the KBS version, clone its sources, patch the manifests, apply them and
    wait for the service to become available.

    Failures to resolve, clone, patch or apply raise an exception. Readiness timeouts are logged together with
    diagnostics and reported by returning `False`, leaving it to the caller to retry.
    """

    config: KbsConfig
    versions: VersionsManifest
    sources: SourceFetcher
    patcher: ManifestPatcher
    cluster: ClusterClient
    clock: Clock = field(default_factory=SystemClock)
    http: requests.Session = field(default_factory=requests.Session)
    http_timeout: float = 10

    state: DeployState = field(init=False, default=DeployState.NOT_DEPLOYED)
    history: list[DeployState] = field(init=False, default_factory=lambda: [DeployState.NOT_DEPLOYED])

    def _transition(self, state: DeployState) -> None:
        logger.debug("{} -> {}", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _fail(self, message: str, *args: object) -> bool:
        logger.error(message, *args)
        self._transition(DeployState.ERROR)
        return False

    def deploy(self, ingress: str | None = None, origin_dir: Path | None = None) -> bool:
        """
        Deploy the KBS.

        Args:
            ingress: The name of the ingress handler used to expose the service outside of the cluster. If not
                     set, the service is only reachable from within the cluster.
            origin_dir: The working directory the deployment was started from, defaults to the current directory.
        Returns:
            `True` if the service is deployed and responds, `False` if it did not become ready in time.
        """

        context = DeployContext(self.config, origin_dir or Path.cwd())

        # Validate the ingress handler before touching anything, and capture the cluster identity while we still
        # know which repository we were started from.
        if ingress:
            self.patcher.ingress.get(ingress)
            context.cluster = ClusterIdentity.capture(context.origin_dir)

        descriptor = ServiceDescriptor.resolve(self.versions, self.config.component)
        logger.info(
            "Deploying KBS {} from {} with image {}",
            descriptor.git_ref,
            descriptor.repository_url,
            descriptor.image_ref,
        )

        with group("Clone the kbs sources"):
            self.sources.fetch(descriptor.repository_url, descriptor.git_ref)

        self.patcher.patch(context, descriptor, ingress)

        with group("Deploy the KBS"):
            self._apply()
            if not self._wait_pod_running():
                return False

        with group("Check the service healthy"):
            if not self._wait_service_responsive():
                return False
            logger.info("KBS service responds to requests")

        if ingress:
            with group("Check the kbs service is exposed"):
                if not self._wait_ingress_responsive():
                    return False

        self._transition(DeployState.READY)
        return True

    def _apply(self) -> None:
        self._transition(DeployState.APPLYING)
        try:
            self.cluster.apply_kustomization(self.config.overlays_dir)
        except Exception:
            logger.error("Failed to apply the KBS manifests")
            self._transition(DeployState.ERROR)
            raise

    def _wait_pod_running(self) -> bool:
        self._transition(DeployState.WAITING_POD_RUNNING)
        prefix = f"{self.config.service_name}-"

        def is_running() -> bool:
            try:
                phases = self.cluster.get_pod_phases(self.config.namespace, self.config.pod_selector)
            except KubectlError as exc:
                logger.debug("Failed to list the KBS pods: {}", exc)
                return False
            return any(name.startswith(prefix) and phase == "Running" for name, phase in phases.items())

        budget = self.config.timeouts.pod_running
        if ReadinessProbe("the KBS pod to be running", is_running, budget.timeout, budget.interval).wait(self.clock):
            return True

        with group("DEBUG - describe kbs deployments"):
            logger.info("\n{}", self.cluster.describe(self.config.namespace, ["get", "deployments"]))
        with group("DEBUG - describe kbs pod"):
            description = self.cluster.describe(self.config.namespace, ["describe", "pod", "-l", self.config.pod_selector])
            logger.info("\n{}", description)
        return self._fail("KBS service pod isn't running")

    def _wait_service_responsive(self) -> bool:
        self._transition(DeployState.WAITING_SERVICE_RESPONSIVE)

        endpoint = self.cluster.get_service_endpoint(self.config.namespace, self.config.service_name)
        if endpoint is None:
            return self._fail("KBS service '{}' not found", self.config.service_name)

        # The service is only reachable from within the cluster, so the request is sent from a pod.
        with self._probe_pod(endpoint) as pod:

            def responded() -> bool:
                return EXPECTED_RESPONSE in self.cluster.get_pod_logs(pod)

            budget = self.config.timeouts.service_responsive
            if ReadinessProbe(f"{endpoint} to respond", responded, budget.timeout, budget.interval).wait(self.clock):
                return True

            with group("DEBUG - kbs logs"):
                logger.info(
                    "\n{}", self.cluster.describe(self.config.namespace, ["logs", "-l", self.config.pod_selector])
                )
            return self._fail("KBS service is not responding to requests")

    @contextmanager
    def _probe_pod(self, endpoint: ServiceEndpoint) -> Iterator[str]:
        """
        Start a single-use pod that sends one request to *endpoint* and logs the response. The pod is deleted when
        the context exits.
        """

        name = f"kbs-checker-{uuid4().hex[:8]}"
        command = ["sh", "-c", f'wget -O- --timeout=5 "{endpoint}" || true']
        self.cluster.run_pod(name, self.config.probe_image, command)
        try:
            yield name
        finally:
            logger.debug("Deleting probe pod '{}'", name)
            self.cluster.delete_pod(name)

    def _wait_ingress_responsive(self) -> bool:
        self._transition(DeployState.WAITING_INGRESS_RESPONSIVE)

        host = self.get_service_host()
        if not host:
            return self._fail("service host not found")

        url = f"http://{host}"

        def responded() -> bool:
            try:
                response = self.http.head(url, timeout=self.http_timeout)
            except requests.RequestException as exc:
                logger.debug("Request to {} failed: {}", url, exc)
                return False
            return EXPECTED_RESPONSE in status_line(response)

        budget = self.config.timeouts.ingress_responsive
        probe = ReadinessProbe(f"{host} to respond", responded, budget.timeout, budget.interval)
        if probe.wait(self.clock):
            logger.info("KBS service responds to requests at {}", host)
            return True

        try:
            response = self.http.head(url, timeout=self.http_timeout)
            logger.info("HEAD {}: {}\n{}", url, status_line(response), format_headers(response))
        except requests.RequestException as exc:
            logger.info("HEAD {}: {}", url, exc)
        return self._fail("service seems to not respond on {} host", host)

    def delete(self) -> bool:
        """
        Delete the deployed KBS resources. Nothing is deleted if the sources were never cloned.

        Returns:
            `False` if the resources could not be deleted.
        """

        handle = self.config.handle()
        overlays_dir = self.config.overlays_dir
        if not overlays_dir.is_dir():
            logger.info("No KBS checkout at '{}', nothing to delete", handle.checkout_path)
            return True

        logger.info("Deleting service '{}' from namespace '{}'", handle.service_name, handle.namespace)
        try:
            self.cluster.delete_kustomization(overlays_dir)
        except (KubectlError, OSError) as exc:
            logger.warning("Failed to delete the KBS: {}", exc)
            return False

        self.state = DeployState.NOT_DEPLOYED
        return True

    def get_service_host(self) -> str | None:
        """
        Return the host name of the KBS ingress if one is configured, otherwise the cluster IP of the service.
        """

        host = self.cluster.get_ingress_host(self.config.namespace, self.config.service_name)
        if host:
            return host
        endpoint = self.cluster.get_service_endpoint(self.config.namespace, self.config.service_name)
        return endpoint.ip if endpoint else None


def status_line(response: requests.Response) -> str:
    return f"{response.status_code} {response.reason}"


def format_headers(response: requests.Response) -> str:
    return "\n".join(f"{key}: {value}" for key, value in response.headers.items())
