"""
Let nodes launched by Karpenter join the cluster, either through the aws-auth
ConfigMap or through an EKS access entry.
"""

import typing

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as kubernetes
import yaml

import eks_karpenter

AWS_AUTH_CONFIGMAP = "aws-auth"


def node_map_entry(role_arn: str) -> dict[str, typing.Any]:
    return {
        "groups": list(eks_karpenter.NODE_AUTH_GROUPS),
        "rolearn": role_arn,
        "username": eks_karpenter.NODE_AUTH_USERNAME,
    }


def update_map_roles(existing_data: dict[str, str] | None, role_arn: str) -> dict[str, str]:
    """
    Return a copy of the aws-auth data with a node mapping for role_arn in mapRoles.

    Existing entries are kept as they are; nothing is added when role_arn is already mapped.
    """
    current_data = dict(existing_data or {})
    map_roles_yaml = current_data.get("mapRoles", "")

    try:
        existing_roles = (yaml.safe_load(map_roles_yaml) or []) if map_roles_yaml else []
    except yaml.YAMLError as e:
        msg = f"Could not parse mapRoles in the {AWS_AUTH_CONFIGMAP} ConfigMap: {e}"
        raise ValueError(msg) from e

    if not any(role.get("rolearn") == role_arn for role in existing_roles):
        existing_roles.append(node_map_entry(role_arn))

    current_data["mapRoles"] = yaml.dump(existing_roles, default_flow_style=False)
    return current_data


def define_node_access_entry(
    name: str,
    cluster_name: str,
    role_arn: pulumi.Input[str],
    opts: pulumi.ResourceOptions,
) -> aws.eks.AccessEntry:
    return aws.eks.AccessEntry(
        f"{name}-node-access-entry",
        cluster_name=cluster_name,
        principal_arn=role_arn,
        type="EC2_LINUX",
        opts=opts,
    )


def define_aws_auth_mapping(
    name: str,
    role_arn: pulumi.Input[str],
    provider: kubernetes.Provider,
    opts: pulumi.ResourceOptions,
) -> kubernetes.core.v1.ConfigMapPatch:
    existing_configmap = kubernetes.core.v1.ConfigMap.get(
        f"{name}-aws-auth-configmap",
        f"{eks_karpenter.KUBE_SYSTEM_NAMESPACE}/{AWS_AUTH_CONFIGMAP}",
        opts=pulumi.ResourceOptions(provider=provider, parent=opts.parent),
    )

    return kubernetes.core.v1.ConfigMapPatch(
        f"{name}-aws-auth-patch",
        metadata={"name": AWS_AUTH_CONFIGMAP, "namespace": eks_karpenter.KUBE_SYSTEM_NAMESPACE},
        data=pulumi.Output.all(existing_configmap.data, role_arn).apply(lambda args: update_map_roles(*args)),
        opts=pulumi.ResourceOptions.merge(
            opts,
            pulumi.ResourceOptions(provider=provider, depends_on=[existing_configmap]),
        ),
    )
