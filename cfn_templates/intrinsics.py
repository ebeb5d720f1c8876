"""
Helpers for CloudFormation intrinsic functions and common template fragments.
"""
from typing import Any, Dict, List, Optional


def ref(logical_id: str) -> Dict[str, str]:
    return {"Ref": logical_id}


def get_att(logical_id: str, attribute: str) -> Dict[str, List[str]]:
    return {"Fn::GetAtt": [logical_id, attribute]}


def sub(template: str, **variables: Any) -> Dict[str, Any]:
    return {"Fn::Sub": [template, variables] if variables else template}


def import_value(export_name: Any) -> Dict[str, Any]:
    return {"Fn::ImportValue": export_name}


def parameter(
    description: str,
    default: Optional[Any] = None,
    type_: str = "String",
    **constraints: Any
) -> Dict[str, Any]:
    """Build a Parameters entry; extra keyword arguments become constraints."""
    declaration: Dict[str, Any] = {"Type": type_, "Description": description}
    if default is not None:
        declaration["Default"] = default
    declaration.update(constraints)
    return declaration


def output(value: Any, description: str, export: bool = False, key: str = "") -> Dict[str, Any]:
    """
    Build an Outputs entry.

    When export is set the output is exported as "<stack name>-<key>" so
    other stacks can read it with Fn::ImportValue.
    """
    declaration: Dict[str, Any] = {"Description": description, "Value": value}
    if export:
        declaration["Export"] = {"Name": sub(f"${{AWS::StackName}}-{key}")}
    return declaration


def export_name(stack_name: Any, key: str) -> Dict[str, Any]:
    """The export name another stack's output() publishes under."""
    return sub(f"${{StackName}}-{key}", StackName=stack_name)


def tags(**values: Any) -> List[Dict[str, Any]]:
    return [{"Key": key, "Value": value} for key, value in values.items()]


def encrypted_bucket_properties() -> Dict[str, Any]:
    """Encryption and public access settings shared by every bucket."""
    return {
        "BucketEncryption": {
            "ServerSideEncryptionConfiguration": [
                {"ServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}
            ]
        },
        "PublicAccessBlockConfiguration": {
            "BlockPublicAcls": True,
            "BlockPublicPolicy": True,
            "IgnorePublicAcls": True,
            "RestrictPublicBuckets": True,
        },
    }


def deny_insecure_transport(bucket_logical_id: str) -> Dict[str, Any]:
    """Bucket policy statement refusing plain HTTP requests."""
    return {
        "Sid": "DenyInsecureTransport",
        "Effect": "Deny",
        "Principal": "*",
        "Action": "s3:*",
        "Resource": [
            get_att(bucket_logical_id, "Arn"),
            sub(f"${{{bucket_logical_id}.Arn}}/*"),
        ],
        "Condition": {"Bool": {"aws:SecureTransport": "false"}},
    }
