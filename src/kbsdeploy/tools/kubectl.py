from dataclasses import dataclass
import json
import os
from pathlib import Path
import shlex
import subprocess
from tempfile import TemporaryDirectory
from typing import Any

import yaml
from loguru import logger

from kbsdeploy.cluster import ClusterClient, ServiceEndpoint


@dataclass
class KubectlError(Exception):
    statuscode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"Kubectl command failed with status code {self.statuscode}"
        if self.stderr:
            message += f": {self.stderr}"
        return message


class Kubectl(ClusterClient):
    """
    Wrapper for interfacing with `kubectl`.
    """

    def __init__(self) -> None:
        self.env: dict[str, str] = {}
        self.tempdir: TemporaryDirectory | None = None

    def __del__(self) -> None:
        if hasattr(self, "tempdir") and self.tempdir is not None:
            logger.warning("Kubectl object was not cleaned up properly")
            self.tempdir.cleanup()

    def __enter__(self) -> "Kubectl":
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self.tempdir is not None:
            self.tempdir.cleanup()
            self.tempdir = None

    def set_kubeconfig(self, kubeconfig: dict[str, Any] | str | Path) -> None:
        """
        Set the kubeconfig to use for `kubectl` commands.
        """

        if self.tempdir is None:
            self.tempdir = TemporaryDirectory()

        if isinstance(kubeconfig, Path):
            kubeconfig_path = kubeconfig
        else:
            kubeconfig_path = Path(self.tempdir.name) / "kubeconfig"
            with open(kubeconfig_path, "w") as f:
                if isinstance(kubeconfig, str):
                    f.write(kubeconfig)
                else:
                    yaml.safe_dump(kubeconfig, f)

        self.env["KUBECONFIG"] = str(kubeconfig_path)

    def _run(self, *args: str, capture: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["kubectl", *args]
        logger.debug("$ {command}", command=" ".join(map(shlex.quote, command)))
        return subprocess.run(command, text=True, capture_output=capture, env={**os.environ, **self.env})

    def _check(self, *args: str, capture: bool = True) -> str:
        status = self._run(*args, capture=capture)
        if status.returncode:
            raise KubectlError(status.returncode, status.stderr)
        return status.stdout or ""

    def _get_json(self, *args: str) -> dict[str, Any] | None:
        """
        Run `kubectl get ... -o json`. Returns `None` if the object does not exist.
        """

        status = self._run("get", *args, "-o", "json")
        if status.returncode:
            if "NotFound" in (status.stderr or ""):
                return None
            raise KubectlError(status.returncode, status.stderr)
        return json.loads(status.stdout)

    # ClusterClient

    def apply_kustomization(self, directory: Path) -> None:
        self._check("apply", "-k", str(directory), capture=False)

    def delete_kustomization(self, directory: Path) -> None:
        self._check("delete", "-k", str(directory), "--ignore-not-found=true", capture=False)

    def get_pod_phases(self, namespace: str, selector: str) -> dict[str, str]:
        pods = self._get_json("pods", "-n", namespace, "-l", selector) or {}
        return {
            item["metadata"]["name"]: item.get("status", {}).get("phase", "Unknown") for item in pods.get("items", [])
        }

    def get_service_endpoint(self, namespace: str, name: str) -> ServiceEndpoint | None:
        service = self._get_json("service", name, "-n", namespace)
        if service is None:
            return None
        spec = service.get("spec", {})
        ports = spec.get("ports") or []
        if not spec.get("clusterIP") or not ports:
            return None
        return ServiceEndpoint(spec["clusterIP"], int(ports[0]["port"]))

    def get_ingress_host(self, namespace: str, name: str) -> str | None:
        ingress = self._get_json("ingress", name, "-n", namespace)
        if ingress is None:
            return None
        rules = ingress.get("spec", {}).get("rules") or []
        if not rules:
            return None
        return rules[0].get("host") or None

    def run_pod(self, name: str, image: str, command: list[str], namespace: str | None = None) -> None:
        args = ["run", name, f"--image={image}", "--restart=Never"]
        if namespace:
            args += ["-n", namespace]
        self._check(*args, "--", *command)

    def get_pod_logs(self, name: str, namespace: str | None = None) -> str:
        args = ["logs", name]
        if namespace:
            args += ["-n", namespace]
        status = self._run(*args)
        if status.returncode:
            return ""
        return status.stdout

    def delete_pod(self, name: str, namespace: str | None = None) -> None:
        args = ["delete", "pod", name, "--ignore-not-found=true"]
        if namespace:
            args += ["-n", namespace]
        self._check(*args)

    def describe(self, namespace: str, what: list[str]) -> str:
        status = self._run("-n", namespace, *what)
        if status.returncode:
            logger.warning("Could not collect diagnostics for {}: {}", " ".join(what), status.stderr)
            return status.stderr or ""
        return status.stdout
