import json
import re
import typing

from eks_karpenter import ValidationError

KUBERNETES_NAME_REGEX = re.compile(r"^(?![0-9]+$)(?!.*-$)(?!-)[a-z0-9-]{1,63}$")


def validate_kubernetes_name(s: str) -> bool:
    """
    Check whether a string is usable as a Karpenter resource name.

    Lowercase alphanumerics and hyphens, 1-63 characters, not purely numeric, and
    neither starting nor ending with a hyphen.
    """
    return isinstance(s, str) and KUBERNETES_NAME_REGEX.match(s) is not None


def require_kubernetes_name(s: str) -> None:
    if not validate_kubernetes_name(s):
        msg = (
            f"Invalid name {s!r}: must be 1-63 lowercase alphanumeric characters or '-', "
            "must not be purely numeric and must not start or end with '-'"
        )
        raise ValidationError(msg)


def has_required_keys(obj: typing.Mapping[str, typing.Any], required: typing.Iterable[str]) -> None:
    """
    Raise a ValidationError for the first required key missing from the top level of obj.

    Only presence is checked; values are never inspected. A level that is not a
    mapping is missing every required key.
    """
    if not isinstance(obj, typing.Mapping):
        first = next(iter(required), None)
        msg = f"Missing required key: {first}, full object: {json.dumps(obj, default=str)}"
        raise ValidationError(msg)

    for key in required:
        if key not in obj:
            msg = f"Missing required key: {key}, full object: {json.dumps(obj, default=str)}"
            raise ValidationError(msg)
