"""Shared pytest fixtures for the eks-karpenter tests.

This module provides common fixtures used across test files:
- pulumi_mocks: Standard Pulumi mock class for resource tests
- aws_context: AwsContext for a commercial-partition test account
- cluster: factory for KarpenterCluster objects backed by a mocked Kubernetes provider
"""

import typing

import pulumi
import pulumi_kubernetes as kubernetes
import pytest

import eks_karpenter
from eks_karpenter.pulumi_resources.aws_karpenter import KarpenterCluster

TEST_ACCOUNT_ID = "123456789012"
TEST_REGION = "us-east-1"


# ============================================================================
# Pulumi Mock Fixtures
# ============================================================================


class StandardPulumiMocks(pulumi.runtime.Mocks):
    """Standard Pulumi mocks for testing Pulumi resources.

    Returns resource names as IDs and echoes back all inputs as outputs, filling in
    the computed properties (arn, name, url) the components read from their children.
    """

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        """Mock resource creation - returns resource name as ID and inputs plus computed properties as outputs."""
        outputs = dict(args.inputs)
        outputs.setdefault("name", args.name)
        outputs.setdefault("arn", f"arn:aws:mock:{TEST_REGION}:{TEST_ACCOUNT_ID}:{args.name}")
        outputs.setdefault("url", f"https://mock.{TEST_REGION}.amazonaws.com/{TEST_ACCOUNT_ID}/{args.name}")
        return args.name, outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        """Mock function calls - returns empty dict."""
        return {}


@pytest.fixture
def pulumi_mocks() -> type[pulumi.runtime.Mocks]:
    """Returns the standard Pulumi mocks class.

    The mocks are not automatically set - call set_mocks() in your test.

    Usage:
        @pulumi.runtime.test
        def test_my_resource(pulumi_mocks):
            pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)
            # Now test your Pulumi resources
    """
    return StandardPulumiMocks


# ============================================================================
# AWS / Cluster Fixtures
# ============================================================================


@pytest.fixture
def aws_context() -> eks_karpenter.AwsContext:
    return eks_karpenter.AwsContext(partition="aws", region=TEST_REGION, account_id=TEST_ACCOUNT_ID)


@pytest.fixture
def cluster() -> typing.Callable[..., KarpenterCluster]:
    """Build a KarpenterCluster; must be called after set_mocks().

    Usage:
        @pulumi.runtime.test
        def test_install(pulumi_mocks, cluster):
            pulumi.runtime.set_mocks(pulumi_mocks(), preview=False)
            karpenter = AWSKarpenter("karpenter", cluster(), ...)
    """

    def _cluster(name: str = "main01", *, use_eks_access_entries: bool = True) -> KarpenterCluster:
        return KarpenterCluster(
            name=name,
            endpoint=f"https://{name}.gr7.{TEST_REGION}.eks.amazonaws.com",
            oidc_issuer=f"https://oidc.eks.{TEST_REGION}.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE",
            provider=kubernetes.Provider(f"{name}-k8s", kubeconfig="{}"),
            use_eks_access_entries=use_eks_access_entries,
        )

    return _cluster
