from __future__ import annotations

import typing

import eks_karpenter
from eks_karpenter import AwsContext, TagKeys, cluster_ownership_tag
from eks_karpenter.versions import ApiVariant

if typing.TYPE_CHECKING:
    import pulumi

AwsPolicyDocumentStatement = dict[str, typing.Any]


def build_irsa_role_assume_role_policy(
    ctx: AwsContext,
    namespace: str,
    oidc_url_tails: list[str],
    service_accounts: list[str],
) -> dict[str, typing.Any]:
    return {
        "Version": eks_karpenter.IAM_POLICY_VERSION,
        "Statement": [
            {
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Effect": "Allow",
                "Principal": {
                    "Federated": f"arn:{ctx.partition}:iam::{ctx.account_id}:oidc-provider/{oidc_url_tail}",
                },
                "Condition": {
                    "StringEquals": {
                        f"{oidc_url_tail}:aud": "sts.amazonaws.com",
                    }
                    | {
                        f"{oidc_url_tail}:sub": [
                            f"system:serviceaccount:{namespace}:{account}" for account in service_accounts
                        ],
                    }
                },
            }
            for oidc_url_tail in oidc_url_tails
        ],
    }


def clean_issuer(url: str) -> str:
    return url.removeprefix("https://").removeprefix("http://")


def node_assume_role_policy(ctx: AwsContext) -> dict[str, typing.Any]:
    return {
        "Version": eks_karpenter.IAM_POLICY_VERSION,
        "Statement": [
            {
                "Action": "sts:AssumeRole",
                "Effect": "Allow",
                "Principal": {"Service": ctx.service_principal("ec2")},
            }
        ],
    }


def node_managed_policy_arns(ctx: AwsContext) -> list[str]:
    return [f"arn:{ctx.partition}:iam::aws:policy/{policy}" for policy in eks_karpenter.NodeRolePolicy]


def controller_policy_document(statements: list[AwsPolicyDocumentStatement]) -> dict[str, typing.Any]:
    return {"Version": eks_karpenter.IAM_POLICY_VERSION, "Statement": statements}


def _statement(
    sid: str,
    actions: list[str],
    resources: list[typing.Any],
    conditions: dict[str, dict[str, typing.Any]] | None = None,
) -> AwsPolicyDocumentStatement:
    statement: AwsPolicyDocumentStatement = {
        "Sid": sid,
        "Effect": "Allow",
        "Action": actions,
        "Resource": resources,
    }
    if conditions:
        statement["Condition"] = conditions

    return statement


def karpenter_controller_statements(
    ctx: AwsContext,
    cluster_name: str,
    variant: ApiVariant,
    node_role_arn: pulumi.Input[str],
    interruption_queue_arn: pulumi.Input[str] | None = None,
) -> list[AwsPolicyDocumentStatement]:
    """
    Build the scoped statements the Karpenter controller role needs.

    Modelled on the CloudFormation template published with Karpenter. The order is
    fixed so the rendered policy is reproducible.

    :param ctx: partition, region and account the ARNs are built for
    :param cluster_name: name of the EKS cluster, used in ownership tag conditions
    :param variant: resolved Karpenter variant
    :param node_role_arn: ARN of the role Karpenter passes to the nodes it launches
    :param interruption_queue_arn: ARN of the interruption queue, None when there is no queue
    :return: list of IAM policy statements
    """
    ec2 = f"arn:{ctx.partition}:ec2:{ctx.region}"
    iam = f"arn:{ctx.partition}:iam::{ctx.account_id}"
    owned = cluster_ownership_tag(cluster_name)

    # v1 tags everything it launches with the cluster name and requires it on creation.
    request_cluster_name: dict[str, typing.Any] = (
        {f"aws:RequestTag/{TagKeys.EKS_CLUSTER_NAME}": cluster_name} if variant == ApiVariant.V1 else {}
    )
    taggable_keys = [str(TagKeys.KARPENTER_NODE_CLAIM), str(TagKeys.NAME)]
    if variant == ApiVariant.V1:
        taggable_keys.insert(0, str(TagKeys.EKS_CLUSTER_NAME))

    resource_tagging_conditions: dict[str, dict[str, typing.Any]] = {
        "StringEquals": {f"aws:ResourceTag/{owned}": "owned"},
        "StringLike": {f"aws:ResourceTag/{TagKeys.KARPENTER_NODE_POOL}": "*"},
        "ForAllValues:StringEquals": {"aws:TagKeys": taggable_keys},
    }
    if variant == ApiVariant.V1:
        resource_tagging_conditions["StringEqualsIfExists"] = dict(request_cluster_name)

    statements = [
        _statement(
            "AllowScopedEC2InstanceAccessActions",
            ["ec2:RunInstances", "ec2:CreateFleet"],
            [
                f"{ec2}::image/*",
                f"{ec2}::snapshot/*",
                f"{ec2}:*:security-group/*",
                f"{ec2}:*:subnet/*",
            ],
        ),
        _statement(
            "AllowScopedEC2LaunchTemplateAccessActions",
            ["ec2:RunInstances", "ec2:CreateFleet"],
            [f"{ec2}:*:launch-template/*"],
            {
                "StringEquals": {f"aws:ResourceTag/{owned}": "owned"},
                "StringLike": {f"aws:ResourceTag/{TagKeys.KARPENTER_NODE_POOL}": "*"},
            },
        ),
        _statement(
            "AllowScopedEC2InstanceActionsWithTags",
            ["ec2:RunInstances", "ec2:CreateFleet", "ec2:CreateLaunchTemplate"],
            [
                f"{ec2}:*:fleet/*",
                f"{ec2}:*:instance/*",
                f"{ec2}:*:volume/*",
                f"{ec2}:*:network-interface/*",
                f"{ec2}:*:launch-template/*",
                f"{ec2}:*:spot-instances-request/*",
            ],
            {
                "StringEquals": {f"aws:RequestTag/{owned}": "owned"} | request_cluster_name,
                "StringLike": {f"aws:RequestTag/{TagKeys.KARPENTER_NODE_POOL}": "*"},
            },
        ),
        _statement(
            "AllowScopedResourceCreationTagging",
            ["ec2:CreateTags"],
            [
                f"{ec2}:*:fleet/*",
                f"{ec2}:*:instance/*",
                f"{ec2}:*:volume/*",
                f"{ec2}:*:network-interface/*",
                f"{ec2}:*:launch-template/*",
                f"{ec2}:*:spot-instances-request/*",
            ],
            {
                "StringEquals": {
                    f"aws:RequestTag/{owned}": "owned",
                    "ec2:CreateAction": ["RunInstances", "CreateFleet", "CreateLaunchTemplate"],
                }
                | request_cluster_name,
                "StringLike": {f"aws:RequestTag/{TagKeys.KARPENTER_NODE_POOL}": "*"},
            },
        ),
        _statement(
            "AllowScopedResourceTagging",
            ["ec2:CreateTags"],
            [f"{ec2}:*:instance/*"],
            resource_tagging_conditions,
        ),
        _statement(
            "AllowScopedDeletion",
            ["ec2:TerminateInstances", "ec2:DeleteLaunchTemplate"],
            [f"{ec2}:*:instance/*", f"{ec2}:*:launch-template/*"],
            {
                "StringEquals": {f"aws:ResourceTag/{owned}": "owned"},
                "StringLike": {f"aws:ResourceTag/{TagKeys.KARPENTER_NODE_POOL}": "*"},
            },
        ),
        _statement(
            "AllowRegionalReadActions",
            [
                "ec2:DescribeAvailabilityZones",
                "ec2:DescribeImages",
                "ec2:DescribeInstances",
                "ec2:DescribeInstanceTypeOfferings",
                "ec2:DescribeInstanceTypes",
                "ec2:DescribeLaunchTemplates",
                "ec2:DescribeSecurityGroups",
                "ec2:DescribeSpotPriceHistory",
                "ec2:DescribeSubnets",
            ],
            ["*"],
            {"StringEquals": {"aws:RequestedRegion": ctx.region}},
        ),
        _statement(
            "AllowSSMReadActions",
            ["ssm:GetParameter"],
            [f"arn:{ctx.partition}:ssm:{ctx.region}::parameter/aws/service/*"],
        ),
        _statement(
            "AllowPricingReadActions",
            ["pricing:GetProducts"],
            ["*"],
        ),
    ]

    if interruption_queue_arn is not None:
        statements.append(
            _statement(
                "AllowInterruptionQueueActions",
                ["sqs:DeleteMessage", "sqs:GetQueueUrl", "sqs:ReceiveMessage"],
                [interruption_queue_arn],
            )
        )

    statements.extend(
        [
            _statement(
                "AllowPassingInstanceRole",
                ["iam:PassRole"],
                [node_role_arn],
                {"StringEquals": {"iam:PassedToService": ctx.service_principal("ec2")}},
            ),
            _statement(
                "AllowScopedInstanceProfileCreationActions",
                ["iam:CreateInstanceProfile"],
                [f"{iam}:instance-profile/*"],
                {
                    "StringEquals": {
                        f"aws:RequestTag/{owned}": "owned",
                        f"aws:RequestTag/{TagKeys.TOPOLOGY_REGION}": ctx.region,
                    }
                    | request_cluster_name,
                    "StringLike": {f"aws:RequestTag/{TagKeys.KARPENTER_EC2_NODE_CLASS}": "*"},
                },
            ),
            _statement(
                "AllowScopedInstanceProfileTagActions",
                ["iam:TagInstanceProfile"],
                [f"{iam}:instance-profile/*"],
                {
                    "StringEquals": {
                        f"aws:ResourceTag/{owned}": "owned",
                        f"aws:ResourceTag/{TagKeys.TOPOLOGY_REGION}": ctx.region,
                        f"aws:RequestTag/{owned}": "owned",
                        f"aws:RequestTag/{TagKeys.TOPOLOGY_REGION}": ctx.region,
                    }
                    | request_cluster_name,
                    "StringLike": {
                        f"aws:ResourceTag/{TagKeys.KARPENTER_EC2_NODE_CLASS}": "*",
                        f"aws:RequestTag/{TagKeys.KARPENTER_EC2_NODE_CLASS}": "*",
                    },
                },
            ),
            _statement(
                "AllowScopedInstanceProfileActions",
                ["iam:AddRoleToInstanceProfile", "iam:RemoveRoleFromInstanceProfile", "iam:DeleteInstanceProfile"],
                [f"{iam}:instance-profile/*"],
                {
                    "StringEquals": {
                        f"aws:ResourceTag/{owned}": "owned",
                        f"aws:ResourceTag/{TagKeys.TOPOLOGY_REGION}": ctx.region,
                    },
                    "StringLike": {f"aws:ResourceTag/{TagKeys.KARPENTER_EC2_NODE_CLASS}": "*"},
                },
            ),
            _statement(
                "AllowInstanceProfileReadActions",
                ["iam:GetInstanceProfile"],
                [f"{iam}:instance-profile/*"],
            ),
            _statement(
                "AllowAPIServerEndpointDiscovery",
                ["eks:DescribeCluster"],
                [f"arn:{ctx.partition}:eks:{ctx.region}:{ctx.account_id}:cluster/{cluster_name}"],
            ),
        ]
    )

    return statements
