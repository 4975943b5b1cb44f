"""
Deploy the Key Broker Service (KBS) of Confidential Containers onto a Kubernetes cluster and check that it responds
to requests.
"""

from enum import Enum
from pathlib import Path
from subprocess import CalledProcessError
import sys
from typing import Any, Optional

from loguru import logger
from rich.console import Console
from rich.table import Table
from typer import Argument, Context, Exit, Option, Typer

from kbsdeploy.config import KbsConfig
from kbsdeploy.deployer import KbsDeployer
from kbsdeploy.ingress import IngressError, IngressRegistry
from kbsdeploy.patcher import ManifestPatcher
from kbsdeploy.sources import SourceFetchError, SourceFetcher
from kbsdeploy.tools.azure import AzureCliError
from kbsdeploy.tools.fs import find_config_file
from kbsdeploy.tools.kubectl import Kubectl, KubectlError
from kbsdeploy.tools.kustomize import Kustomize, KustomizeError
from kbsdeploy.versions import DependencyError, ServiceDescriptor, VersionsManifest


def new_typer(**kwargs: Any) -> Typer:
    return Typer(no_args_is_help=True, pretty_exceptions_enable=False, **kwargs)


app = new_typer(help=__doc__)

FATAL_ERRORS = (
    DependencyError,
    SourceFetchError,
    KustomizeError,
    IngressError,
    AzureCliError,
    KubectlError,
    CalledProcessError,
)


class LogLevel(str, Enum):
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@app.callback()
def _callback(
    ctx: Context,
    log_level: LogLevel = Option(LogLevel.INFO, "--log-level", "-l", help="The log level to use."),
    config: Optional[Path] = Option(
        None,
        help=f"Path to the `{KbsConfig.FILENAME}` to use. If not set, it will be searched in the current directory "
        "and its parents. Defaults apply if there is none.",
    ),
) -> None:
    logger.remove()
    logger.add(sys.stderr, level=log_level.name)
    ctx.obj = KbsConfig.load(config, required=config is not None)


def _versions(config: KbsConfig, required: bool = True) -> VersionsManifest:
    if config.versions_file is not None:
        return VersionsManifest(config.versions_file)
    if not required:
        # Commands that do not read the manifest should not fail when it is missing.
        file = find_config_file(VersionsManifest.FILENAME, required=False)
        return VersionsManifest(file or Path(VersionsManifest.FILENAME).absolute())
    return VersionsManifest.find()


def _deployer(config: KbsConfig, kubectl: Kubectl, versions_required: bool = True) -> KbsDeployer:
    return KbsDeployer(
        config=config,
        versions=_versions(config, versions_required),
        sources=SourceFetcher(config.checkout_dir),
        patcher=ManifestPatcher(Kustomize(), IngressRegistry.default()),
        cluster=kubectl,
    )


def _kubectl(kubeconfig: Path | None) -> Kubectl:
    kubectl = Kubectl()
    if kubeconfig is not None:
        kubectl.set_kubeconfig(kubeconfig.absolute())
    return kubectl


@app.command()
def deploy(
    ctx: Context,
    ingress: Optional[str] = Option(
        None, help="Expose the service outside of the cluster with the named ingress handler (e.g. `aks`)."
    ),
    kubeconfig: Optional[Path] = Option(None, help="The kubeconfig to use instead of the default one."),
) -> None:
    """
    Clone the KBS sources, deploy them and wait until the service responds.
    """

    config: KbsConfig = ctx.obj
    with _kubectl(kubeconfig) as kubectl:
        try:
            ready = _deployer(config, kubectl).deploy(ingress)
        except FATAL_ERRORS as exc:
            logger.error("{}", exc)
            raise Exit(1)

    if not ready:
        raise Exit(1)


@app.command()
def delete(
    ctx: Context,
    kubeconfig: Optional[Path] = Option(None, help="The kubeconfig to use instead of the default one."),
) -> None:
    """
    Delete the deployed KBS. Failures are logged but do not fail the command.
    """

    config: KbsConfig = ctx.obj
    with _kubectl(kubeconfig) as kubectl:
        _deployer(config, kubectl, versions_required=False).delete()


@app.command()
def service_host(
    ctx: Context,
    kubeconfig: Optional[Path] = Option(None, help="The kubeconfig to use instead of the default one."),
) -> None:
    """
    Print the host name of the KBS ingress, or the cluster IP of the service if there is no ingress.
    """

    config: KbsConfig = ctx.obj
    with _kubectl(kubeconfig) as kubectl:
        host = _deployer(config, kubectl, versions_required=False).get_service_host()

    if not host:
        logger.error("service host not found")
        raise Exit(1)
    print(host)


@app.command()
def info(ctx: Context) -> None:
    """
    Show which KBS sources and image would be deployed.
    """

    config: KbsConfig = ctx.obj
    try:
        versions = _versions(config)
        descriptor = ServiceDescriptor.resolve(versions, config.component)
    except DependencyError as exc:
        logger.error("{}", exc)
        raise Exit(1)

    table = Table(title=str(versions.path))
    table.add_column("Key", justify="right", style="cyan")
    table.add_column("Value")
    table.add_row("Repository", descriptor.repository_url)
    table.add_row("Ref", descriptor.git_ref)
    table.add_row("Image", descriptor.image_ref)
    table.add_row("Checkout", str(config.checkout_dir))
    table.add_row("Namespace", config.namespace)
    Console().print(table)


@app.command()
def resolve(ctx: Context, key: str = Argument(..., help="Dotted key path, e.g. `externals.coco-kbs.url`.")) -> None:
    """
    Print a value from the versions manifest.
    """

    config: KbsConfig = ctx.obj
    try:
        print(_versions(config).get(key))
    except DependencyError as exc:
        logger.error("{}", exc)
        raise Exit(1)
