from __future__ import annotations

import dataclasses
import enum

DEFAULT_NAMESPACE = "karpenter"
DEFAULT_SERVICE_ACCOUNT_NAME = "karpenter"
KUBE_SYSTEM_NAMESPACE = "kube-system"
HELM_RELEASE_NAME = "karpenter"

IAM_POLICY_VERSION = "2012-10-17"
IRSA_ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"

INTERRUPTION_QUEUE_RETENTION_SECONDS = 300

NODE_AUTH_USERNAME = "system:node:{{EC2PrivateDNSName}}"
NODE_AUTH_GROUPS = ("system:bootstrappers", "system:nodes")


class ValidationError(ValueError):
    """A name, spec, version or config value was rejected before any resource was declared."""


class VersionIncompatibilityError(ValueError):
    """An operation was used with a Karpenter version that no longer supports it."""


class NodeRolePolicy(enum.StrEnum):
    WORKER_POLICY = "AmazonEKSWorkerNodePolicy"
    CNI_POLICY = "AmazonEKS_CNI_Policy"
    REGISTRY_POLICY = "AmazonEC2ContainerRegistryReadOnly"
    SSM_POLICY = "AmazonSSMManagedInstanceCore"


class TagKeys(enum.StrEnum):
    EKS_CLUSTER_NAME = "eks:eks-cluster-name"
    KARPENTER_EC2_NODE_CLASS = "karpenter.k8s.aws/ec2nodeclass"
    KARPENTER_NODE_CLAIM = "karpenter.sh/nodeclaim"
    KARPENTER_NODE_POOL = "karpenter.sh/nodepool"
    NAME = "Name"
    TOPOLOGY_REGION = "topology.kubernetes.io/region"


def cluster_ownership_tag(cluster_name: str) -> str:
    return f"kubernetes.io/cluster/{cluster_name}"


@dataclasses.dataclass(frozen=True)
class AwsContext:
    """
    The ambient AWS values every ARN and service principal is built from.

    Kept explicit so statement assembly never reads global state.
    """

    partition: str
    region: str
    account_id: str
    url_suffix: str = "amazonaws.com"

    def service_principal(self, service: str) -> str:
        return f"{service}.{self.url_suffix}"
