"""
Karpenter version parsing and the behavior variant each version resolves to.

Every version-dependent decision (chart repository, interruption handling, Helm
values shape, permission conditions and CRD API versions) is made from a single
KarpenterRelease resolved once per installation.
"""

from __future__ import annotations

import dataclasses
import enum
import re

from eks_karpenter import ValidationError

OCI_REPOSITORY_VERSION = "v0.17.0"
INTERRUPTION_VERSION = "v0.19.0"
V1BETA1_VERSION = "v0.32.0"
V1_VERSION = "v1.0.0"

LEGACY_REPOSITORY_URL = "https://charts.karpenter.sh"
OCI_REPOSITORY_URL = "oci://public.ecr.aws/karpenter/karpenter"
LEGACY_CHART_NAME = "karpenter"

_VERSION_PREFIX_REGEX = re.compile(r"^[^0-9]*")


class ApiVariant(enum.StrEnum):
    LEGACY = "legacy"
    INTERRUPTION = "interruption"
    V1BETA1 = "v1beta1"
    V1 = "v1"


# Newest first; the first threshold a version reaches wins.
VARIANT_THRESHOLDS: tuple[tuple[str, ApiVariant], ...] = (
    (V1_VERSION, ApiVariant.V1),
    (V1BETA1_VERSION, ApiVariant.V1BETA1),
    (INTERRUPTION_VERSION, ApiVariant.INTERRUPTION),
)


def parse_version(version: str) -> tuple[int, ...]:
    """
    Parse a dotted version into a tuple of ints.

    :param version: e.g. "v0.32.0", "0.19.1" or "1.1.1-rc.1"
    :return: the numeric components, e.g. (0, 32, 0)
    """
    stripped = _VERSION_PREFIX_REGEX.sub("", version.strip())
    stripped = stripped.split("+", 1)[0].split("-", 1)[0]

    if not stripped:
        msg = f"Invalid Karpenter version: {version!r}"
        raise ValidationError(msg)

    try:
        return tuple(int(s) for s in stripped.split("."))
    except ValueError as e:
        msg = f"Invalid Karpenter version: {version!r}"
        raise ValidationError(msg) from e


def compare_versions(a: str, b: str) -> int:
    """
    Compare two versions component by component.

    When one side runs out of components before a difference is found, the longer
    one is greater, so "v1.0" < "v1.0.0".

    :return: -1, 0 or 1
    """
    a_parts = parse_version(a)
    b_parts = parse_version(b)

    for x, y in zip(a_parts, b_parts, strict=False):
        if x != y:
            return -1 if x < y else 1

    if len(a_parts) == len(b_parts):
        return 0

    return -1 if len(a_parts) < len(b_parts) else 1


def version_at_least(version: str, threshold: str) -> bool:
    return compare_versions(version, threshold) >= 0


def resolve_variant(version: str | None) -> ApiVariant:
    if version is None:
        return ApiVariant.V1

    for threshold, variant in VARIANT_THRESHOLDS:
        if version_at_least(version, threshold):
            return variant

    return ApiVariant.LEGACY


@dataclasses.dataclass(frozen=True)
class KarpenterRelease:
    version: str | None
    variant: ApiVariant
    repository_url: str

    @property
    def is_oci(self) -> bool:
        return self.repository_url.startswith("oci://")

    @property
    def chart(self) -> str:
        # OCI charts are addressed by their full reference rather than through a repository.
        return self.repository_url if self.is_oci else LEGACY_CHART_NAME

    @property
    def supports_interruption(self) -> bool:
        return self.variant != ApiVariant.LEGACY

    @property
    def uses_node_pools(self) -> bool:
        return self.variant in (ApiVariant.V1BETA1, ApiVariant.V1)


def resolve_release(version: str | None) -> KarpenterRelease:
    if version is None or version_at_least(version, OCI_REPOSITORY_VERSION):
        repository_url = OCI_REPOSITORY_URL
    else:
        repository_url = LEGACY_REPOSITORY_URL

    return KarpenterRelease(
        version=version,
        variant=resolve_variant(version),
        repository_url=repository_url,
    )
