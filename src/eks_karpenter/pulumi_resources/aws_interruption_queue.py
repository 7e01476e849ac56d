import json

import pulumi
import pulumi_aws as aws

import eks_karpenter
from eks_karpenter import AwsContext

# Based on the interruption handling section of the CloudFormation template published with Karpenter.
INTERRUPTION_EVENT_PATTERNS: dict[str, dict[str, list[str]]] = {
    "scheduled-change": {"source": ["aws.health"], "detail-type": ["AWS Health Event"]},
    "spot-interruption": {"source": ["aws.ec2"], "detail-type": ["EC2 Spot Instance Interruption Warning"]},
    "rebalance": {"source": ["aws.ec2"], "detail-type": ["EC2 Instance Rebalance Recommendation"]},
    "instance-state-change": {"source": ["aws.ec2"], "detail-type": ["EC2 Instance State-change Notification"]},
}

INTERRUPTION_QUEUE_TARGET_ID = "KarpenterInterruptionQueueTarget"


def interruption_queue_policy(queue_arn: str, ctx: AwsContext) -> str:
    return json.dumps(
        {
            "Version": eks_karpenter.IAM_POLICY_VERSION,
            "Id": "EC2InterruptionPolicy",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": [ctx.service_principal("events"), ctx.service_principal("sqs")]},
                    "Action": "sqs:SendMessage",
                    "Resource": queue_arn,
                },
                {
                    "Sid": "DenyHTTP",
                    "Effect": "Deny",
                    "Principal": "*",
                    "Action": "sqs:*",
                    "Resource": queue_arn,
                    "Condition": {"Bool": {"aws:SecureTransport": "false"}},
                },
            ],
        }
    )


class AWSInterruptionQueue(pulumi.ComponentResource):
    """
    SQS queue receiving EC2 interruption events for Karpenter, plus the EventBridge rules feeding it.

    The queue is named after the cluster so the controller can find it from its settings.
    """

    queue: aws.sqs.Queue
    rules: dict[str, aws.cloudwatch.EventRule]
    targets: dict[str, aws.cloudwatch.EventTarget]

    def __init__(
        self,
        name: str,
        cluster_name: str,
        aws_context: AwsContext,
        *,
        tags: dict[str, str] | None = None,
        **kwargs,
    ):
        super().__init__(
            f"eks-karpenter:{self.__class__.__name__}",
            name,
            **kwargs,
        )

        self.name = name
        self.cluster_name = cluster_name
        self.aws_context = aws_context
        self.tags = tags or {}
        self.rules = {}
        self.targets = {}

        self._define_queue()
        self._define_event_rules()

        self.register_outputs(
            {
                "queue_arn": self.queue.arn,
                "queue_name": self.queue.name,
            }
        )

    def _define_queue(self) -> None:
        self.queue = aws.sqs.Queue(
            f"{self.name}-queue",
            name=self.cluster_name,
            message_retention_seconds=eks_karpenter.INTERRUPTION_QUEUE_RETENTION_SECONDS,
            sqs_managed_sse_enabled=True,
            tags=self.tags | {"Name": self.cluster_name},
            opts=pulumi.ResourceOptions(parent=self),
        )

        ctx = self.aws_context
        aws.sqs.QueuePolicy(
            f"{self.name}-queue-policy",
            queue_url=self.queue.url,
            policy=self.queue.arn.apply(lambda arn: interruption_queue_policy(arn, ctx)),
            opts=pulumi.ResourceOptions(parent=self.queue),
        )

    def _define_event_rules(self) -> None:
        for suffix, event_pattern in INTERRUPTION_EVENT_PATTERNS.items():
            rule = aws.cloudwatch.EventRule(
                f"{self.name}-{suffix}-rule",
                event_pattern=json.dumps(event_pattern),
                tags=self.tags,
                opts=pulumi.ResourceOptions(parent=self),
            )

            self.rules[suffix] = rule
            self.targets[suffix] = aws.cloudwatch.EventTarget(
                f"{self.name}-{suffix}-target",
                rule=rule.name,
                target_id=INTERRUPTION_QUEUE_TARGET_ID,
                arn=self.queue.arn,
                opts=pulumi.ResourceOptions(parent=rule),
            )
