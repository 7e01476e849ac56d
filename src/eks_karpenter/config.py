from __future__ import annotations

import dataclasses
import typing
import warnings

import deepmerge  # type: ignore
import yaml

import eks_karpenter
from eks_karpenter import ValidationError

if typing.TYPE_CHECKING:
    import pathlib


@dataclasses.dataclass(frozen=True)
class KarpenterCustomResourceConfig:
    name: str
    spec: dict[str, typing.Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class KarpenterInstallConfig:
    """Installation settings read from a karpenter.yaml document.

    Example:
        spec:
          namespace: karpenter
          version: v0.32.0
          helm-extra-values:
            replicas: 1
          node-classes:
            - name: default
              spec:
                amiFamily: AL2
                role: KarpenterNodeRole-main
                subnetSelectorTerms: [{tags: {karpenter.sh/discovery: main}}]
                securityGroupSelectorTerms: [{tags: {karpenter.sh/discovery: main}}]
          node-pools:
            - name: default
              spec:
                template:
                  spec:
                    nodeClassRef: {name: default}
                    requirements: []
    """

    namespace: str = eks_karpenter.DEFAULT_NAMESPACE
    service_account_name: str = eks_karpenter.DEFAULT_SERVICE_ACCOUNT_NAME
    version: str | None = None
    helm_extra_values: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    node_classes: list[KarpenterCustomResourceConfig] = dataclasses.field(default_factory=list)
    node_pools: list[KarpenterCustomResourceConfig] = dataclasses.field(default_factory=list)


def _normalize_keys(spec: dict[str, typing.Any]) -> dict[str, typing.Any]:
    return {key.replace("-", "_"): value for key, value in spec.items()}


def _load_custom_resources(field: str, entries: typing.Any) -> list[KarpenterCustomResourceConfig]:
    if not isinstance(entries, list):
        msg = f"'spec.{field}' must be a list, got {type(entries).__name__}"
        raise ValidationError(msg)

    resources = []
    for entry in entries:
        if not isinstance(entry, dict) or "name" not in entry:
            msg = f"Every entry in 'spec.{field}' needs a name: {entry!r}"
            raise ValidationError(msg)

        resources.append(KarpenterCustomResourceConfig(name=str(entry["name"]), spec=entry.get("spec") or {}))

    return resources


def install_config_from_dict(cfg_dict: dict[str, typing.Any]) -> KarpenterInstallConfig:
    if not isinstance(cfg_dict, dict) or not isinstance(cfg_dict.get("spec"), dict):
        msg = "Karpenter config must be a mapping with a 'spec' mapping"
        raise ValidationError(msg)

    cfg_spec = _normalize_keys(cfg_dict["spec"])

    if "provisioners" in cfg_spec:
        warnings.warn(
            "'spec.provisioners' found in Karpenter config; Provisioners were replaced by "
            "'spec.node_pools' in v0.32.0 and are ignored",
            stacklevel=2,
        )
        cfg_spec.pop("provisioners")

    known = {field.name for field in dataclasses.fields(KarpenterInstallConfig)}
    unknown = sorted(set(cfg_spec) - known)
    if unknown:
        msg = f"Unknown keys in Karpenter config: {unknown}. Valid keys are: {sorted(known)}"
        raise ValidationError(msg)

    spec: dict[str, typing.Any] = {
        "namespace": eks_karpenter.DEFAULT_NAMESPACE,
        "service_account_name": eks_karpenter.DEFAULT_SERVICE_ACCOUNT_NAME,
        "version": None,
        "helm_extra_values": {},
        "node_classes": [],
        "node_pools": [],
    }

    deepmerge.always_merger.merge(spec, cfg_spec)

    if spec["version"] is not None:
        spec["version"] = str(spec["version"])

    spec["helm_extra_values"] = spec["helm_extra_values"] or {}
    spec["node_classes"] = _load_custom_resources("node_classes", spec["node_classes"] or [])
    spec["node_pools"] = _load_custom_resources("node_pools", spec["node_pools"] or [])

    return KarpenterInstallConfig(**spec)


def load_install_config(path: pathlib.Path) -> KarpenterInstallConfig:
    if not path.exists():
        msg = f"Karpenter config not found: {path}"
        raise ValidationError(msg)

    return install_config_from_dict(yaml.safe_load(path.read_text()))
