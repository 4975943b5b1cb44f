from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from textwrap import dedent

import pytest

from kbsdeploy.cluster import ClusterClient, ServiceEndpoint
from kbsdeploy.config import KbsConfig
from kbsdeploy.tools.poll import Clock


@dataclass
class FakeClock(Clock):
    """
    A clock that advances instantly when sleeping.
    """

    current: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    @property
    def elapsed(self) -> float:
        return self.current

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        self.current += seconds
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_checkout(config: KbsConfig) -> None:
    """
    Create the parts of a KBS checkout that the deployment touches.
    """

    config.base_dir.mkdir(parents=True)
    config.overlays_dir.mkdir(parents=True)
    (config.base_dir / "kustomization.yaml").write_text(
        dedent(
            """
            apiVersion: kustomize.config.k8s.io/v1beta1
            kind: Kustomization
            namespace: coco-tenant
            images:
            - name: kbs-container-image
              newName: ghcr.io/confidential-containers/staged-images/kbs
              newTag: latest
            """
        )
    )
    (config.overlays_dir / "kustomization.yaml").write_text(
        dedent(
            """
            apiVersion: kustomize.config.k8s.io/v1beta1
            kind: Kustomization
            resources:
            - ../base
            """
        )
    )
    (config.overlays_dir / "ingress.yaml").write_text("spec:\n  ingressClassName: ${KBS_INGRESS_CLASS}\n")


@dataclass
class FakeCluster(ClusterClient):
    """
    In-memory cluster. Pod phases and probe logs are produced by callables that receive the number of times they
    have been queried so far, which makes it easy to simulate a service that becomes ready after a while.
    """

    pod_phases: Callable[[int], dict[str, str]] = lambda n: {"kbs-6d8f-abc": "Running"}
    probe_logs: Callable[[int], str] = lambda n: "wget: server returned error: HTTP/1.1 404 Not Found\n"
    endpoint: ServiceEndpoint | None = ServiceEndpoint("10.0.0.12", 8080)
    ingress_host: str | None = None
    apply_error: Exception | None = None
    delete_error: Exception | None = None

    applied: list[Path] = field(default_factory=list)
    deleted: list[Path] = field(default_factory=list)
    pods: dict[str, list[str]] = field(default_factory=dict)
    started: list[tuple[str, str, list[str]]] = field(default_factory=list)
    deleted_pods: list[str] = field(default_factory=list)
    diagnostics: list[list[str]] = field(default_factory=list)
    pod_queries: int = 0
    log_queries: int = 0

    def apply_kustomization(self, directory: Path) -> None:
        if self.apply_error:
            raise self.apply_error
        self.applied.append(directory)

    def delete_kustomization(self, directory: Path) -> None:
        if self.delete_error:
            raise self.delete_error
        self.deleted.append(directory)

    def get_pod_phases(self, namespace: str, selector: str) -> dict[str, str]:
        self.pod_queries += 1
        return self.pod_phases(self.pod_queries)

    def get_service_endpoint(self, namespace: str, name: str) -> ServiceEndpoint | None:
        return self.endpoint

    def get_ingress_host(self, namespace: str, name: str) -> str | None:
        return self.ingress_host

    def run_pod(self, name: str, image: str, command: list[str], namespace: str | None = None) -> None:
        self.pods[name] = command
        self.started.append((name, image, command))

    def get_pod_logs(self, name: str, namespace: str | None = None) -> str:
        self.log_queries += 1
        return self.probe_logs(self.log_queries)

    def delete_pod(self, name: str, namespace: str | None = None) -> None:
        self.pods.pop(name, None)
        self.deleted_pods.append(name)

    def describe(self, namespace: str, what: list[str]) -> str:
        self.diagnostics.append(what)
        return ""
