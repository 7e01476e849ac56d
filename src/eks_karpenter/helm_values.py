from __future__ import annotations

import typing

import deepmerge  # type: ignore

import eks_karpenter
from eks_karpenter.versions import ApiVariant

if typing.TYPE_CHECKING:
    import pulumi

# Dicts merge along the constructed structure; lists and scalars from the caller replace ours.
values_merger = deepmerge.Merger(
    [(dict, ["merge"]), (list, ["override"])],
    ["override"],
    ["override"],
)


def _copy_tree(value: typing.Any) -> typing.Any:
    # copy.deepcopy cannot copy pulumi.Output leaves, so only containers are copied.
    if isinstance(value, dict):
        return {k: _copy_tree(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_tree(v) for v in value]

    return value


def _service_account_values(
    service_account_name: str,
    controller_role_arn: pulumi.Input[str],
) -> dict[str, typing.Any]:
    return {
        "create": False,
        "name": service_account_name,
        "annotations": {
            eks_karpenter.IRSA_ROLE_ARN_ANNOTATION: controller_role_arn,
        },
    }


def _cluster_settings(
    variant: ApiVariant,
    cluster_name: str,
    cluster_endpoint: pulumi.Input[str],
    instance_profile_name: pulumi.Input[str],
    interruption_queue_name: pulumi.Input[str] | None,
) -> dict[str, typing.Any]:
    if variant == ApiVariant.LEGACY:
        return {
            "clusterName": cluster_name,
            "clusterEndpoint": cluster_endpoint,
            "aws": {
                "defaultInstanceProfile": instance_profile_name,
            },
        }

    if variant == ApiVariant.INTERRUPTION:
        return {
            "settings": {
                "aws": {
                    "clusterName": cluster_name,
                    "clusterEndpoint": cluster_endpoint,
                    "defaultInstanceProfile": instance_profile_name,
                    "interruptionQueueName": interruption_queue_name,
                },
            },
        }

    # From v0.32.0 the instance profile comes from the role declared on each EC2NodeClass.
    return {
        "settings": {
            "clusterName": cluster_name,
            "clusterEndpoint": cluster_endpoint,
            "interruptionQueue": interruption_queue_name,
        },
    }


def build_helm_values(
    variant: ApiVariant,
    *,
    service_account_name: str,
    controller_role_arn: pulumi.Input[str],
    cluster_name: str,
    cluster_endpoint: pulumi.Input[str],
    instance_profile_name: pulumi.Input[str],
    interruption_queue_name: pulumi.Input[str] | None = None,
    extra_values: typing.Mapping[str, typing.Any] | None = None,
) -> dict[str, typing.Any]:
    """
    Build the values passed to the Karpenter chart.

    Caller supplied extra_values are merged over the computed cluster settings, then
    the service account values are applied again so they always win: the chart must
    bind to the service account carrying the controller role.

    The returned dict is a new tree sharing no containers with extra_values.
    """
    values: dict[str, typing.Any] = {
        "serviceAccount": _service_account_values(service_account_name, controller_role_arn),
    }
    values.update(
        _cluster_settings(
            variant,
            cluster_name,
            cluster_endpoint,
            instance_profile_name,
            interruption_queue_name,
        )
    )

    if extra_values:
        values_merger.merge(values, _copy_tree(dict(extra_values)))

    if not isinstance(values.get("serviceAccount"), dict):
        values["serviceAccount"] = {}

    values_merger.merge(
        values["serviceAccount"],
        _service_account_values(service_account_name, controller_role_arn),
    )

    return values
