import shutil
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from kbsdeploy.config import DeployContext, KbsConfig
from kbsdeploy.conftest import make_checkout
from kbsdeploy.ingress import IngressHandler, IngressRegistry, UnsupportedIngressError
from kbsdeploy.patcher import ManifestPatcher
from kbsdeploy.tools.kustomize import Kustomize
from kbsdeploy.versions import ServiceDescriptor


def descriptor(image_name: str = "quay.io/kbs", image_tag: str = "1.2.3") -> ServiceDescriptor:
    return ServiceDescriptor("https://example/kbs.git", "v1.2.3", image_name, image_tag)


@pytest.fixture
def context(tmp_path: Path) -> DeployContext:
    config = KbsConfig(checkout_dir=tmp_path / "kbs")
    make_checkout(config)
    return DeployContext(config, tmp_path)


def test__ManifestPatcher__patch(context: DeployContext) -> None:
    kustomize = MagicMock(spec=Kustomize)

    ManifestPatcher(kustomize, IngressRegistry()).patch(context, descriptor())

    assert (context.config.overlays_dir / "key.bin").read_text() == "somesecret\n"
    kustomize.set_image.assert_called_once_with(context.config.base_dir, "kbs-container-image", "quay.io/kbs:1.2.3")


@pytest.mark.parametrize(
    "image_name,image_tag",
    [
        ("ghcr.io/confidential-containers/staged-images/kbs", "latest"),
        ("localhost:5000/kbs", "v0.10.1"),
        ("quay.io/kbs", "sha-abc/def:ghi"),
    ],
)
def test__ManifestPatcher__patch_passes_image_reference_through(
    context: DeployContext, image_name: str, image_tag: str
) -> None:
    kustomize = MagicMock(spec=Kustomize)

    ManifestPatcher(kustomize, IngressRegistry()).patch(context, descriptor(image_name, image_tag))

    assert kustomize.set_image.call_args.args[2] == f"{image_name}:{image_tag}"


def test__ManifestPatcher__patch_applies_ingress_after_image(context: DeployContext) -> None:
    calls = MagicMock()
    handler = MagicMock(spec=IngressHandler)
    kustomize = MagicMock(spec=Kustomize)
    calls.attach_mock(kustomize.set_image, "set_image")
    calls.attach_mock(handler.apply, "apply_ingress")

    ManifestPatcher(kustomize, IngressRegistry({"aks": handler})).patch(context, descriptor(), "aks")

    assert [name for name, _args, _kwargs in calls.mock_calls] == ["set_image", "apply_ingress"]
    handler.apply.assert_called_once_with(context, context.config.overlays_dir)


def test__ManifestPatcher__unknown_ingress_leaves_checkout_untouched(context: DeployContext) -> None:
    kustomize = MagicMock(spec=Kustomize)

    with pytest.raises(UnsupportedIngressError):
        ManifestPatcher(kustomize, IngressRegistry()).patch(context, descriptor(), "foo")

    assert not (context.config.overlays_dir / "key.bin").exists()
    kustomize.set_image.assert_not_called()


@pytest.mark.skipif(condition=shutil.which("kustomize") is None, reason="kustomize not installed")
def test__ManifestPatcher__patch_with_kustomize(context: DeployContext) -> None:
    ManifestPatcher(Kustomize(), IngressRegistry()).patch(context, descriptor())

    kustomization = yaml.safe_load((context.config.base_dir / "kustomization.yaml").read_text())
    image = next(image for image in kustomization["images"] if image["name"] == "kbs-container-image")
    assert f"{image['newName']}:{image['newTag']}" == "quay.io/kbs:1.2.3"
