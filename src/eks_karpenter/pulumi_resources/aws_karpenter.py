from __future__ import annotations

import dataclasses
import json
import typing

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as kubernetes

import eks_karpenter
import eks_karpenter.aws_iam
import eks_karpenter.config
import eks_karpenter.custom_resources as crs
import eks_karpenter.helm_values
import eks_karpenter.pulumi_resources.aws_auth
import eks_karpenter.pulumi_resources.aws_interruption_queue
import eks_karpenter.versions
from eks_karpenter import AwsContext, VersionIncompatibilityError
from eks_karpenter.validation import require_kubernetes_name


@dataclasses.dataclass(frozen=True)
class KarpenterCluster:
    """
    The existing EKS cluster Karpenter is installed into.

    :param name: EKS cluster name; also used as the interruption queue name
    :param endpoint: API server endpoint handed to the controller
    :param oidc_issuer: OIDC issuer URL of the cluster, used for the controller's IRSA trust
    :param provider: Kubernetes provider targeting the cluster
    :param use_eks_access_entries: map the node role with an access entry instead of aws-auth
    """

    name: str
    endpoint: pulumi.Input[str]
    oidc_issuer: pulumi.Input[str]
    provider: kubernetes.Provider
    use_eks_access_entries: bool = False


def aws_context_from_provider() -> AwsContext:
    partition = aws.get_partition()
    return AwsContext(
        partition=partition.partition,
        region=aws.get_region().name,
        account_id=aws.get_caller_identity().account_id,
        url_suffix=partition.dns_suffix,
    )


class AWSKarpenter(pulumi.ComponentResource):
    """
    Karpenter installation for an existing EKS cluster.

    Creates the node role and instance profile, maps the node role into the cluster,
    creates the controller role and its policy, the interruption queue (v0.19.0+), the
    namespace, the service account and the Helm release. Karpenter custom resources can
    be added afterwards with add_ec2_node_class/add_node_pool; they are ordered after the
    Helm release so the CRDs exist.
    """

    release: eks_karpenter.versions.KarpenterRelease
    node_role: aws.iam.Role
    instance_profile: aws.iam.InstanceProfile
    controller_role: aws.iam.Role
    controller_policy_statements: list[dict[str, typing.Any]]
    interruption_queue: eks_karpenter.pulumi_resources.aws_interruption_queue.AWSInterruptionQueue | None
    namespace: kubernetes.core.v1.Namespace | None
    service_account: kubernetes.core.v1.ServiceAccount
    helm_chart_values: dict[str, typing.Any]
    chart: kubernetes.helm.v3.Release
    custom_resources: dict[tuple[str, str], kubernetes.apiextensions.CustomResource]

    def __init__(
        self,
        name: str,
        cluster: KarpenterCluster,
        *,
        namespace: str = eks_karpenter.DEFAULT_NAMESPACE,
        service_account_name: str = eks_karpenter.DEFAULT_SERVICE_ACCOUNT_NAME,
        version: str | None = None,
        helm_extra_values: dict[str, typing.Any] | None = None,
        node_role: aws.iam.Role | None = None,
        aws_context: AwsContext | None = None,
        tags: dict[str, str] | None = None,
        **kwargs,
    ):
        require_kubernetes_name(namespace)

        super().__init__(
            f"eks-karpenter:{self.__class__.__name__}",
            name,
            **kwargs,
        )

        self.name = name
        self.cluster = cluster
        self.namespace_name = namespace
        self.service_account_name = service_account_name
        self.helm_extra_values = helm_extra_values or {}
        self.aws_context = aws_context or aws_context_from_provider()
        self.tags = tags or {}
        self.release = eks_karpenter.versions.resolve_release(version)
        self.custom_resources = {}
        self._managed_policy_count = 0

        pulumi.log.info(
            f"Installing Karpenter {version or 'latest'} into {cluster.name}/{namespace} "
            f"({self.release.variant} API, chart {self.release.repository_url})"
        )

        self._define_node_role(node_role)
        self._define_node_auth()
        self._define_controller_role()
        self._define_interruption_queue()
        self._define_controller_policy()
        self._define_namespace()
        self._define_service_account()
        self._define_helm_release()

        self.register_outputs(
            {
                "node_role_arn": self.node_role.arn,
                "instance_profile_name": self.instance_profile.name,
                "controller_role_arn": self.controller_role.arn,
                "helm_release": self.chart,
            }
        )

    @classmethod
    def from_config(
        cls,
        name: str,
        cluster: KarpenterCluster,
        cfg: eks_karpenter.config.KarpenterInstallConfig,
        **kwargs,
    ) -> AWSKarpenter:
        karpenter = cls(
            name,
            cluster,
            namespace=cfg.namespace,
            service_account_name=cfg.service_account_name,
            version=cfg.version,
            helm_extra_values=cfg.helm_extra_values,
            **kwargs,
        )

        for node_class in cfg.node_classes:
            karpenter.add_ec2_node_class(node_class.name, node_class.spec)

        for node_pool in cfg.node_pools:
            karpenter.add_node_pool(node_pool.name, node_pool.spec)

        return karpenter

    def _define_node_role(self, node_role: aws.iam.Role | None) -> None:
        if node_role is not None:
            self.node_role = node_role
        else:
            self.node_role = aws.iam.Role(
                f"{self.name}-node-role",
                aws.iam.RoleArgs(
                    assume_role_policy=json.dumps(eks_karpenter.aws_iam.node_assume_role_policy(self.aws_context)),
                    tags=self.tags,
                ),
                opts=pulumi.ResourceOptions(parent=self),
            )

            for idx, policy_arn in enumerate(eks_karpenter.aws_iam.node_managed_policy_arns(self.aws_context)):
                aws.iam.RolePolicyAttachment(
                    f"{self.name}-node-role-policy-{idx}",
                    role=self.node_role.name,
                    policy_arn=policy_arn,
                    opts=pulumi.ResourceOptions(parent=self.node_role),
                )

        self.instance_profile = aws.iam.InstanceProfile(
            f"{self.name}-instance-profile",
            aws.iam.InstanceProfileArgs(
                name=f"{self.cluster.name}-{self.name}",
                role=self.node_role.name,
                tags=self.tags,
            ),
            opts=pulumi.ResourceOptions(parent=self),
        )

    def _define_node_auth(self) -> None:
        opts = pulumi.ResourceOptions(parent=self)
        if self.cluster.use_eks_access_entries:
            eks_karpenter.pulumi_resources.aws_auth.define_node_access_entry(
                self.name,
                self.cluster.name,
                self.node_role.arn,
                opts,
            )
        else:
            eks_karpenter.pulumi_resources.aws_auth.define_aws_auth_mapping(
                self.name,
                self.node_role.arn,
                self.cluster.provider,
                opts,
            )

    def _define_controller_role(self) -> None:
        ctx = self.aws_context
        namespace = self.namespace_name
        service_account_name = self.service_account_name

        assume_role_policy = pulumi.Output.from_input(self.cluster.oidc_issuer).apply(
            lambda url: json.dumps(
                eks_karpenter.aws_iam.build_irsa_role_assume_role_policy(
                    ctx,
                    namespace=namespace,
                    oidc_url_tails=[eks_karpenter.aws_iam.clean_issuer(url)],
                    service_accounts=[service_account_name],
                )
            )
        )

        self.controller_role = aws.iam.Role(
            f"{self.name}-controller-role",
            aws.iam.RoleArgs(
                assume_role_policy=assume_role_policy,
                tags=self.tags,
            ),
            opts=pulumi.ResourceOptions(parent=self),
        )

    def _define_interruption_queue(self) -> None:
        if not self.release.supports_interruption:
            self.interruption_queue = None
            return

        self.interruption_queue = eks_karpenter.pulumi_resources.aws_interruption_queue.AWSInterruptionQueue(
            f"{self.name}-interruption",
            self.cluster.name,
            self.aws_context,
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

    def _define_controller_policy(self) -> None:
        self.controller_policy_statements = eks_karpenter.aws_iam.karpenter_controller_statements(
            self.aws_context,
            self.cluster.name,
            self.release.variant,
            node_role_arn=self.node_role.arn,
            interruption_queue_arn=(
                self.interruption_queue.queue.arn if self.interruption_queue is not None else None
            ),
        )

        aws.iam.RolePolicy(
            f"{self.name}-controller-policy",
            role=self.controller_role.id,
            policy=pulumi.Output.json_dumps(
                eks_karpenter.aws_iam.controller_policy_document(self.controller_policy_statements)
            ),
            opts=pulumi.ResourceOptions(parent=self.controller_role),
        )

    def _define_namespace(self) -> None:
        if self.namespace_name == eks_karpenter.KUBE_SYSTEM_NAMESPACE:
            pulumi.log.warn(f"Installing Karpenter into {eks_karpenter.KUBE_SYSTEM_NAMESPACE}; no namespace created")
            self.namespace = None
            return

        self.namespace = kubernetes.core.v1.Namespace(
            f"{self.name}-namespace",
            metadata=kubernetes.meta.v1.ObjectMetaArgs(
                name=self.namespace_name,
            ),
            opts=pulumi.ResourceOptions(parent=self, provider=self.cluster.provider),
        )

    def _define_service_account(self) -> None:
        self.service_account = kubernetes.core.v1.ServiceAccount(
            f"{self.name}-service-account",
            metadata=kubernetes.meta.v1.ObjectMetaArgs(
                name=self.service_account_name,
                namespace=self.namespace_name,
                annotations={
                    eks_karpenter.IRSA_ROLE_ARN_ANNOTATION: self.controller_role.arn,
                },
            ),
            opts=pulumi.ResourceOptions(
                parent=self,
                provider=self.cluster.provider,
                depends_on=[self.namespace] if self.namespace is not None else [],
            ),
        )

    def _define_helm_release(self) -> None:
        self.helm_chart_values = eks_karpenter.helm_values.build_helm_values(
            self.release.variant,
            service_account_name=self.service_account_name,
            controller_role_arn=self.controller_role.arn,
            cluster_name=self.cluster.name,
            cluster_endpoint=self.cluster.endpoint,
            instance_profile_name=self.instance_profile.name,
            interruption_queue_name=(
                self.interruption_queue.queue.name if self.interruption_queue is not None else None
            ),
            extra_values=self.helm_extra_values,
        )

        depends_on: list[pulumi.Resource] = [self.service_account]
        if self.namespace is not None:
            depends_on.insert(0, self.namespace)

        self.chart = kubernetes.helm.v3.Release(
            f"{self.name}-helm-release",
            name=eks_karpenter.HELM_RELEASE_NAME,
            chart=self.release.chart,
            version=self.release.version,
            namespace=self.namespace_name,
            repository_opts=(
                None
                if self.release.is_oci
                else kubernetes.helm.v3.RepositoryOptsArgs(repo=self.release.repository_url)
            ),
            create_namespace=False,
            # Custom resources added later need the CRDs and webhooks to be ready.
            skip_await=False,
            values=self.helm_chart_values,
            opts=pulumi.ResourceOptions(parent=self, provider=self.cluster.provider, depends_on=depends_on),
        )

    def _define_custom_resource(
        self,
        name: str,
        api_version: str,
        kind: str,
        spec: dict[str, typing.Any],
    ) -> crs.ResourceMetadata:
        if (kind, name) in self.custom_resources:
            msg = f"{kind} {name!r} has already been added to {self.name}"
            raise eks_karpenter.ValidationError(msg)

        manifest = crs.build_manifest(api_version, kind, name, self.namespace_name, spec)

        self.custom_resources[(kind, name)] = kubernetes.apiextensions.CustomResource(
            f"{self.name}-{kind.lower()}-{name}",
            api_version=manifest["apiVersion"],
            kind=manifest["kind"],
            metadata=manifest["metadata"],
            spec=manifest["spec"],
            opts=pulumi.ResourceOptions(parent=self, provider=self.cluster.provider, depends_on=[self.chart]),
        )

        return crs.ResourceMetadata(name=name, namespace=self.namespace_name)

    def _warn_if_before_node_pools(self, operation: str) -> None:
        if not self.release.uses_node_pools:
            pulumi.log.warn(
                f"{operation} used with Karpenter {self.release.version}; NodePool and EC2NodeClass "
                f"are only served from {eks_karpenter.versions.V1BETA1_VERSION}"
            )

    def _reject_after_node_pools(self, operation: str, replacement: str) -> None:
        if self.release.uses_node_pools:
            msg = (
                f"{operation} is not supported for Karpenter {self.release.version or 'latest'}: "
                f"the API was removed in {eks_karpenter.versions.V1BETA1_VERSION}, use {replacement} instead"
            )
            pulumi.log.error(msg)
            raise VersionIncompatibilityError(msg)

    def add_ec2_node_class(self, name: str, spec: crs.NodeSpec) -> crs.ResourceMetadata:
        """
        Add an EC2NodeClass.

        :param name: resource name, see validation.validate_kubernetes_name
        :param spec: EC2NodeClass spec; amiFamily, subnetSelectorTerms, securityGroupSelectorTerms and role
            are required
        :return: name and namespace of the created resource, for use in a NodePool nodeClassRef
        """
        require_kubernetes_name(name)
        spec_dict = crs.spec_to_dict(spec)
        crs.validate_ec2_node_class_spec(spec_dict)
        self._warn_if_before_node_pools("add_ec2_node_class")

        return self._define_custom_resource(
            name,
            crs.ec2_node_class_api_version(self.release.variant),
            crs.EC2_NODE_CLASS_KIND,
            spec_dict,
        )

    def add_node_pool(self, name: str, spec: crs.NodeSpec) -> crs.ResourceMetadata:
        """
        Add a NodePool.

        :param name: resource name, see validation.validate_kubernetes_name
        :param spec: NodePool spec; template.spec.nodeClassRef and template.spec.requirements are required
        :return: name and namespace of the created resource
        """
        require_kubernetes_name(name)
        spec_dict = crs.spec_to_dict(spec)
        crs.validate_node_pool_spec(spec_dict)
        self._warn_if_before_node_pools("add_node_pool")

        return self._define_custom_resource(
            name,
            crs.node_pool_api_version(self.release.variant),
            crs.NODE_POOL_KIND,
            spec_dict,
        )

    def add_provisioner(self, name: str, spec: typing.Mapping[str, typing.Any]) -> crs.ResourceMetadata:
        """Deprecated: Provisioners were replaced by NodePools in v0.32.0."""
        require_kubernetes_name(name)
        self._reject_after_node_pools("add_provisioner", "add_node_pool")

        return self._define_custom_resource(
            name,
            crs.PROVISIONER_API_VERSION,
            crs.PROVISIONER_KIND,
            dict(spec),
        )

    def add_node_template(self, name: str, spec: typing.Mapping[str, typing.Any]) -> crs.ResourceMetadata:
        """Deprecated: AWSNodeTemplates were replaced by EC2NodeClasses in v0.32.0."""
        require_kubernetes_name(name)
        self._reject_after_node_pools("add_node_template", "add_ec2_node_class")

        return self._define_custom_resource(
            name,
            crs.NODE_TEMPLATE_API_VERSION,
            crs.NODE_TEMPLATE_KIND,
            dict(spec),
        )

    def add_managed_policy_to_role(self, policy: aws.iam.Policy | pulumi.Input[str]) -> aws.iam.RolePolicyAttachment:
        """
        Attach a managed policy to the Karpenter controller role (not the node role).

        :param policy: an aws.iam.Policy or a policy ARN
        """
        policy_arn = policy.arn if isinstance(policy, aws.iam.Policy) else policy

        attachment = aws.iam.RolePolicyAttachment(
            f"{self.name}-controller-managed-policy-{self._managed_policy_count}",
            role=self.controller_role.name,
            policy_arn=policy_arn,
            opts=pulumi.ResourceOptions(parent=self.controller_role),
        )
        self._managed_policy_count += 1

        return attachment
