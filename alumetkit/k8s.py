"""Discovery of the cgroups of Kubernetes pods and reading of their CPU usage."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO, Union

import requests

from .cgroupv2 import CgroupV2Metric

log = logging.getLogger(__name__)

PathLike = Union[str, Path]
PodInfo = tuple[str, str, str]

_NO_POD: PodInfo = ("", "", "")
_TOKEN_COMMAND = ["kubectl", "create", "token", "alumet-reader"]
_CONFIG_HASH = "kubernetes.io/config.hash"
_TIMEOUT = 30.0


@dataclass
class CgroupV2MetricFile:
    """An opened ``cpu.stat`` file of a pod's cgroup, with the pod it belongs to."""

    name: str
    path: Path
    file: TextIO
    uid: str
    namespace: str
    node: str

    def close(self) -> None:
        """Close the underlying file."""
        self.file.close()

    def __enter__(self) -> "CgroupV2MetricFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def is_accessible_dir(path: PathLike) -> bool:
    """Tell whether ``path`` is an existing directory."""
    return Path(path).is_dir()


def _close_all(files: list[CgroupV2MetricFile]) -> None:
    for metric_file in files:
        metric_file.close()


def list_metric_file_in_dir(
    root_directory_path: PathLike, hostname: str, kubernetes_api_url: str
) -> list[CgroupV2MetricFile]:
    """Open the ``cpu.stat`` file of every pod cgroup directly under the given directory."""
    root = Path(root_directory_path)
    entries = sorted(root.iterdir())
    pods = get_existing_pods(hostname, kubernetes_api_url)

    result: list[CgroupV2MetricFile] = []
    try:
        for path in entries:
            if not path.is_dir():
                continue
            dir_uid = path.name.removesuffix(".slice")
            if not root.name:
                raise ValueError(f"No file name found in {root}")
            prefix = root.name.removesuffix(".slice") + "-"
            uid = dir_uid.removeprefix(prefix)
            name_to_seek = uid.removeprefix("pod").replace("_", "-")
            name, namespace, node = pods.get(name_to_seek, _NO_POD)

            cpu_stat = path / "cpu.stat"
            try:
                file = open(cpu_stat, encoding="utf-8")
            except OSError as exc:
                raise OSError(f"failed to open file {cpu_stat}") from exc
            result.append(
                CgroupV2MetricFile(name=name, path=path, file=file, uid=uid, namespace=namespace, node=node)
            )
    except BaseException:
        _close_all(result)
        raise
    return result


def list_all_k8s_pods_file(
    root_directory_path: PathLike, hostname: str, kubernetes_api_url: str
) -> list[CgroupV2MetricFile]:
    """List the pod cgroups of the root directory and of its ``.slice`` subdirectories."""
    root = Path(root_directory_path)
    if not root.exists():
        return []
    directories = [root]
    directories.extend(sorted(p for p in root.iterdir() if p.is_dir() and p.name.endswith(".slice")))

    result: list[CgroupV2MetricFile] = []
    try:
        for directory in directories:
            result.extend(list_metric_file_in_dir(directory, hostname, kubernetes_api_url))
    except BaseException:
        _close_all(result)
        raise
    return result


def gather_value(metric_file: CgroupV2MetricFile) -> CgroupV2Metric:
    """Read and parse the file, and label the result with the pod's identity."""
    try:
        content = metric_file.file.read()
        metric_file.file.seek(0)
    except OSError as exc:
        raise OSError(f"Unable to gather cgroup v2 metrics by reading file {metric_file.name}") from exc
    try:
        metric = CgroupV2Metric.from_str(content)
    except ValueError as exc:
        raise ValueError(f"failed to parse {metric_file.name}") from exc
    metric.name = metric_file.name
    metric.namespace = metric_file.namespace
    metric.uid = metric_file.uid
    metric.node = metric_file.node
    return metric


def _service_token() -> Optional[str]:
    try:
        completed = subprocess.run(_TOKEN_COMMAND, capture_output=True, check=False)
    except OSError:
        return None
    return completed.stdout.decode("utf-8", errors="replace").strip()


def _get_json(url: str, headers: dict[str, str]) -> tuple[bool, Any]:
    """Return (reachable, decoded body); the body is None when it is not valid JSON."""
    try:
        response = requests.get(url, headers=headers, verify=False, timeout=_TIMEOUT)
    except requests.RequestException:
        return False, None
    try:
        return True, response.json()
    except ValueError as exc:
        log.error("Error parsing JSON: %s", exc)
        return True, None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _query_pods(node: str, kubernetes_api_url: str) -> Optional[Any]:
    """Ask the API for the pods, on the node if given; None if it cannot be reached."""
    if not kubernetes_api_url:
        return None
    token = _service_token()
    if token is None:
        return None

    root_url = kubernetes_api_url + "/api/v1/pods/"
    api_url = f"{root_url}?fieldSelector=spec.nodeName={node}" if node else root_url
    headers = {"Authorization": f"Bearer {token}"}

    reachable, data = _get_json(api_url, headers)
    if not reachable:
        return None
    if isinstance(data, dict) and "items" in data:
        if not _as_list(data["items"]) and node:
            # The node was not found: ask again for the pods of all nodes.
            reachable, data = _get_json(root_url, headers)
            if not reachable:
                return None
        else:
            log.debug("Data is empty or not available.")
    return data


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _pods(data: Any) -> Iterator[tuple[str, PodInfo]]:
    """Yield (uid, (name, namespace, node)) for each pod of an API response."""
    if not isinstance(data, dict) or "items" not in data:
        log.debug("No items part found in the JSON response.")
        return
    for item in _as_list(data["items"]):
        metadata = _get(item, "metadata")
        spec = _get(item, "spec")
        config_hash = _text(_get(_get(metadata, "annotations"), _CONFIG_HASH))
        if not config_hash:
            if metadata is None:
                continue
            config_hash = _text(_get(metadata, "uid"))
        info = (_text(_get(metadata, "name")), _text(_get(metadata, "namespace")), _text(_get(spec, "nodeName")))
        yield config_hash, info


def get_existing_pods(node: str, kubernetes_api_url: str) -> dict[str, PodInfo]:
    """Map each pod uid to its (name, namespace, node); empty if the API is unavailable."""
    data = _query_pods(node, kubernetes_api_url)
    result: dict[str, PodInfo] = {}
    if data is None:
        return result
    for uid, info in _pods(data):
        log.debug("Found matching pod: %s in namespace %s", info[0], info[1])
        result.setdefault(uid, info)
    return result


def get_pod_name(uid: str, node: str, kubernetes_api_url: str) -> PodInfo:
    """Return (name, namespace, node) of the pod with this uid, or empty strings."""
    wanted = uid.replace("_", "-")
    data = _query_pods(node, kubernetes_api_url)
    if data is None:
        return _NO_POD
    for pod_uid, info in _pods(data):
        if pod_uid == wanted:
            log.debug("Found matching pod: %s in namespace %s", info[0], info[1])
            return info
    return _NO_POD