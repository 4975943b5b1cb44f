from pathlib import Path
from textwrap import dedent
from unittest.mock import MagicMock

import pytest

from kbsdeploy.config import ClusterIdentity, DeployContext, KbsConfig
from kbsdeploy.ingress import IngressError
from kbsdeploy.ingress.aks import AksIngressHandler, render_template
from kbsdeploy.tools.azure import AzureCli
from kbsdeploy.tools.kustomize import Kustomize

INGRESS_TEMPLATE = dedent(
    """
    apiVersion: networking.k8s.io/v1
    kind: Ingress
    metadata:
      name: kbs
      namespace: coco-tenant
    spec:
      ingressClassName: ${KBS_INGRESS_CLASS}
      rules:
      - host: ${KBS_INGRESS_HOST}
        http:
          paths:
          - path: /kbs
            pathType: Prefix
            backend:
              service:
                name: kbs
                port:
                  number: 8080
    """
)


@pytest.fixture
def overlays(tmp_path: Path) -> Path:
    (tmp_path / "ingress.yaml").write_text(INGRESS_TEMPLATE)
    return tmp_path


@pytest.fixture
def context(tmp_path: Path) -> DeployContext:
    return DeployContext(KbsConfig(), tmp_path, ClusterIdentity("k8s-abc", "kataCI-k8s-abc"))


def new_handler(*dns_zones: str) -> AksIngressHandler:
    azure = MagicMock(spec=AzureCli)
    azure.get_dns_zone.side_effect = list(dns_zones)
    return AksIngressHandler(azure, MagicMock(spec=Kustomize))


def test__AksIngressHandler__apply(overlays: Path, context: DeployContext) -> None:
    handler = new_handler("abc123.eastus.aksapp.io")

    handler.apply(context, overlays)

    content = (overlays / "ingress.yaml").read_text()
    assert "ingressClassName: addon-http-application-routing" in content
    assert "- host: kbs.abc123.eastus.aksapp.io" in content
    assert "${" not in content
    assert not (overlays / "ingress.yaml.tmp").exists()
    handler.azure.get_dns_zone.assert_called_once_with("kataCI-k8s-abc", "k8s-abc")
    handler.azure.enable_http_application_routing.assert_not_called()
    handler.kustomize.add_resource.assert_called_once_with(overlays, "ingress.yaml")


def test__AksIngressHandler__enables_addon_when_dns_zone_is_missing(overlays: Path, context: DeployContext) -> None:
    handler = new_handler("", "abc123.eastus.aksapp.io")

    handler.apply(context, overlays)

    handler.azure.enable_http_application_routing.assert_called_once_with("kataCI-k8s-abc", "k8s-abc")
    assert "kbs.abc123.eastus.aksapp.io" in (overlays / "ingress.yaml").read_text()


def test__AksIngressHandler__fails_when_dns_zone_stays_empty(overlays: Path, context: DeployContext) -> None:
    handler = new_handler("", "")

    with pytest.raises(IngressError, match="DNS zone name is nil"):
        handler.apply(context, overlays)

    assert (overlays / "ingress.yaml").read_text() == INGRESS_TEMPLATE
    handler.kustomize.add_resource.assert_not_called()


def test__AksIngressHandler__requires_cluster_identity(overlays: Path) -> None:
    handler = new_handler("abc123.eastus.aksapp.io")

    with pytest.raises(IngressError, match="cluster identity"):
        handler.apply(DeployContext(KbsConfig(), overlays), overlays)

    handler.azure.get_dns_zone.assert_not_called()


def test__render_template__leaves_unknown_placeholders() -> None:
    assert render_template("$A ${B} ${C}", A="1", B="2") == "1 2 ${C}"
