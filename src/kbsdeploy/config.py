from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import hashlib
import os
from pathlib import Path
import subprocess

from loguru import logger

from kbsdeploy.tools.fs import find_config_file


@dataclass
class WaitBudget:
    timeout: int
    """ Total number of seconds to wait. """

    interval: int
    """ Seconds between two checks. """


@dataclass
class Timeouts:
    pod_running: WaitBudget = field(default_factory=lambda: WaitBudget(timeout=120, interval=10))
    """ How long to wait for the KBS pod to be running. """

    service_responsive: WaitBudget = field(default_factory=lambda: WaitBudget(timeout=60, interval=10))
    """ How long to wait for the KBS service to respond from within the cluster. """

    ingress_responsive: WaitBudget = field(default_factory=lambda: WaitBudget(timeout=350, interval=30))
    """
    How long to wait for the KBS service to respond through its ingress. External DNS records can take several
    minutes to propagate.
    """


@dataclass(frozen=True)
class DeploymentHandle:
    """
    Identifies a live KBS deployment.
    """

    namespace: str
    service_name: str
    checkout_path: Path


@dataclass
class KbsConfig:
    """
    Settings for deploying the KBS. Every field has a default, so the configuration file is optional.
    """

    FILENAME = "kbs-deploy.yaml"

    checkout_dir: Path = Path("/tmp/kbs")
    """
    Where the KBS sources are cloned to. This directory is removed and re-created on every deployment, so only one
    deployment per host can be in progress at a time.
    """

    namespace: str = "coco-tenant"
    service_name: str = "kbs"
    pod_selector: str = "app=kbs"

    component: str = "coco-kbs"
    """ The entry under `externals` in the versions manifest that describes the KBS. """

    versions_file: Path | None = None
    """ Path to the versions manifest. If not set, `versions.yaml` is searched from the working directory up. """

    manifests_subdir: str = "kbs/config/kubernetes"
    """ The directory in the KBS repository that contains the kustomize `base` and `overlays`. """

    image_placeholder: str = "kbs-container-image"
    """ The image name in the base kustomization that is replaced with the actual image reference. """

    placeholder_secret: str = "somesecret"
    """
    Content of the `overlays/key.bin` secret. The deployment expects at least one secret at install time, the
    actual resources are provisioned later by the tests.
    """

    probe_image: str = "quay.io/prometheus/busybox"
    timeouts: Timeouts = field(default_factory=Timeouts)

    @property
    def manifests_dir(self) -> Path:
        return self.checkout_dir / self.manifests_subdir

    @property
    def overlays_dir(self) -> Path:
        return self.manifests_dir / "overlays"

    @property
    def base_dir(self) -> Path:
        return self.manifests_dir / "base"

    def handle(self) -> DeploymentHandle:
        return DeploymentHandle(self.namespace, self.service_name, self.checkout_dir)

    @staticmethod
    def load(file: Path | None = None, /, *, required: bool = False) -> KbsConfig:
        """
        Load the configuration from the given file, or search `kbs-deploy.yaml` in the current directory and its
        parents. If no file is found, the defaults are returned unless *required* is set.
        """

        from databind.json import load as deser
        from yaml import safe_load

        if file is None:
            file = find_config_file(KbsConfig.FILENAME, required=required)
            if file is None:
                return KbsConfig()

        logger.debug("Loading configuration from '{}'", file)
        config = deser(safe_load(file.read_text()) or {}, KbsConfig, filename=str(file))
        if config.versions_file is not None:
            config.versions_file = (file.parent / config.versions_file).absolute()
        return config


@dataclass(frozen=True)
class ClusterIdentity:
    """
    The name and resource group of the cloud managed cluster that is deployed to.
    """

    name: str
    resource_group: str

    @staticmethod
    def capture(cwd: Path, env: Mapping[str, str] | None = None) -> ClusterIdentity:
        """
        Determine the cluster identity from the environment, or from the HEAD commit of the repository in *cwd*.

        The derived name depends on the working tree the deployment is started from, which is why it must be
        captured before the KBS sources are cloned.
        """

        if env is None:
            env = os.environ

        name = env.get("AKS_NAME") or derive_cluster_name(cwd, env)
        resource_group = env.get("AZ_RG") or f"kataCI-{name}"
        logger.debug("Using cluster '{}' in resource group '{}'", name, resource_group)
        return ClusterIdentity(name, resource_group)


def derive_cluster_name(cwd: Path, env: Mapping[str, str], test_type: str = "k8s") -> str:
    short_sha = subprocess.run(
        ["git", "rev-parse", "--short=12", "HEAD"],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    ).stdout.strip()
    metadata = "-".join(
        [
            env.get("GH_PR_NUMBER", ""),
            short_sha,
            env.get("KATA_HYPERVISOR", ""),
            env.get("KATA_HOST_OS", ""),
            "amd64",
            env.get("K8S_TEST_HOST_TYPE", "")[:1],
            env.get("GENPOLICY_PULL_METHOD", "")[:1],
        ]
    )
    # Hash the metadata to keep the name within the 63 characters allowed for cluster names.
    digest = hashlib.sha1((metadata + "\n").encode()).hexdigest()
    return f"{test_type}-{digest}"


@dataclass
class DeployContext:
    """
    State shared by the steps of a single deployment.
    """

    config: KbsConfig
    origin_dir: Path
    """ The working directory the deployment was started from. """

    cluster: ClusterIdentity | None = None
    """ Only captured when an ingress is requested. """
