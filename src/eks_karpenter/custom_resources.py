"""
Karpenter custom resource documents.

EC2NodeClass and NodePool specs may be given as plain mappings or as the typed
specs below; the typed specs cover the required fields and carry everything else
in ``extra`` so newer upstream fields pass through untouched.
"""

from __future__ import annotations

import dataclasses
import typing

from eks_karpenter.validation import has_required_keys
from eks_karpenter.versions import ApiVariant

if typing.TYPE_CHECKING:
    import pulumi

EC2_NODE_CLASS_REQUIRED_KEYS = ("amiFamily", "subnetSelectorTerms", "securityGroupSelectorTerms", "role")
NODE_POOL_TEMPLATE_SPEC_REQUIRED_KEYS = ("nodeClassRef", "requirements")

PROVISIONER_API_VERSION = "karpenter.sh/v1alpha5"
PROVISIONER_KIND = "Provisioner"
NODE_TEMPLATE_API_VERSION = "karpenter.k8s.aws/v1alpha1"
NODE_TEMPLATE_KIND = "AWSNodeTemplate"
NODE_POOL_KIND = "NodePool"
EC2_NODE_CLASS_KIND = "EC2NodeClass"


class ResourceMetadata(typing.TypedDict):
    name: str
    namespace: str


@dataclasses.dataclass(frozen=True)
class EC2NodeClassSpec:
    ami_family: str | None = None
    subnet_selector_terms: list[dict[str, typing.Any]] | None = None
    security_group_selector_terms: list[dict[str, typing.Any]] | None = None
    role: pulumi.Input[str] | None = None
    extra: dict[str, typing.Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, typing.Any]:
        spec = dict(self.extra)
        known = {
            "amiFamily": self.ami_family,
            "subnetSelectorTerms": self.subnet_selector_terms,
            "securityGroupSelectorTerms": self.security_group_selector_terms,
            "role": self.role,
        }
        spec.update({k: v for k, v in known.items() if v is not None})
        return spec


@dataclasses.dataclass(frozen=True)
class NodePoolSpec:
    node_class_ref: dict[str, typing.Any] | None = None
    requirements: list[dict[str, typing.Any]] | None = None
    template_spec_extra: dict[str, typing.Any] = dataclasses.field(default_factory=dict)
    extra: dict[str, typing.Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, typing.Any]:
        spec = dict(self.extra)
        template = dict(spec.get("template") or {})

        template_spec = dict(template.get("spec") or {})
        template_spec.update(self.template_spec_extra)
        if self.node_class_ref is not None:
            template_spec["nodeClassRef"] = self.node_class_ref
        if self.requirements is not None:
            template_spec["requirements"] = self.requirements

        template["spec"] = template_spec
        spec["template"] = template
        return spec


NodeSpec = typing.Mapping[str, typing.Any] | EC2NodeClassSpec | NodePoolSpec


def spec_to_dict(spec: NodeSpec) -> dict[str, typing.Any]:
    if isinstance(spec, EC2NodeClassSpec | NodePoolSpec):
        return spec.to_dict()

    return dict(spec)


def validate_ec2_node_class_spec(spec: typing.Mapping[str, typing.Any]) -> None:
    has_required_keys(spec, EC2_NODE_CLASS_REQUIRED_KEYS)


def validate_node_pool_spec(spec: typing.Mapping[str, typing.Any]) -> None:
    has_required_keys(spec, ["template"])
    has_required_keys(spec["template"], ["spec"])
    has_required_keys(spec["template"]["spec"], NODE_POOL_TEMPLATE_SPEC_REQUIRED_KEYS)


def node_pool_api_version(variant: ApiVariant) -> str:
    return "karpenter.sh/v1" if variant == ApiVariant.V1 else "karpenter.sh/v1beta1"


def ec2_node_class_api_version(variant: ApiVariant) -> str:
    return "karpenter.k8s.aws/v1" if variant == ApiVariant.V1 else "karpenter.k8s.aws/v1beta1"


def build_manifest(
    api_version: str,
    kind: str,
    name: str,
    namespace: str,
    spec: typing.Mapping[str, typing.Any],
) -> dict[str, typing.Any]:
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
        },
        "spec": dict(spec),
    }
