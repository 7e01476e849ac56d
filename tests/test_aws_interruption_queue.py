import json

import pulumi

import eks_karpenter
from eks_karpenter.pulumi_resources import aws_interruption_queue


def test_interruption_queue_policy(aws_context: eks_karpenter.AwsContext) -> None:
    policy = json.loads(
        aws_interruption_queue.interruption_queue_policy("arn:aws:sqs:us-east-1:1:main01", aws_context)
    )

    allow, deny = policy["Statement"]
    assert allow["Action"] == "sqs:SendMessage"
    assert allow["Principal"] == {"Service": ["events.amazonaws.com", "sqs.amazonaws.com"]}
    assert allow["Resource"] == "arn:aws:sqs:us-east-1:1:main01"
    assert deny["Effect"] == "Deny"
    assert deny["Condition"] == {"Bool": {"aws:SecureTransport": "false"}}


def test_interruption_queue_policy_follows_partition_suffix() -> None:
    ctx = eks_karpenter.AwsContext(partition="aws-cn", region="cn-north-1", account_id="1", url_suffix="amazonaws.com.cn")

    policy = json.loads(aws_interruption_queue.interruption_queue_policy("arn:aws-cn:sqs:cn-north-1:1:main01", ctx))

    assert policy["Statement"][0]["Principal"] == {"Service": ["events.amazonaws.com.cn", "sqs.amazonaws.com.cn"]}


def test_event_patterns_cover_interruption_sources() -> None:
    detail_types = {
        pattern["detail-type"][0] for pattern in aws_interruption_queue.INTERRUPTION_EVENT_PATTERNS.values()
    }

    assert detail_types == {
        "AWS Health Event",
        "EC2 Spot Instance Interruption Warning",
        "EC2 Instance Rebalance Recommendation",
        "EC2 Instance State-change Notification",
    }


@pulumi.runtime.test
def test_define_interruption_queue(pulumi_mocks: type[pulumi.runtime.Mocks], aws_context: eks_karpenter.AwsContext):
    pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)

    queue = aws_interruption_queue.AWSInterruptionQueue(
        "karpenter-interruption", "main01", aws_context, tags={"team": "platform"}
    )

    assert set(queue.rules) == set(aws_interruption_queue.INTERRUPTION_EVENT_PATTERNS)
    assert set(queue.targets) == set(queue.rules)

    def check(args: list) -> None:
        name, retention, sse, tags, target_ids = args
        assert name == "main01"
        assert retention == 300
        assert sse is True
        assert tags == {"team": "platform", "Name": "main01"}
        assert set(target_ids) == {aws_interruption_queue.INTERRUPTION_QUEUE_TARGET_ID}

    return pulumi.Output.all(
        queue.queue.name,
        queue.queue.message_retention_seconds,
        queue.queue.sqs_managed_sse_enabled,
        queue.queue.tags,
        pulumi.Output.all(*[target.target_id for target in queue.targets.values()]),
    ).apply(check)
