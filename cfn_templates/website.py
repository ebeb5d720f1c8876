"""
Static website hosting stack: S3 + CloudFront (OAC) + WAF, with access
logging, lifecycle policies and CloudWatch alarms.

The distribution serves one release directory of the website bucket at a
time, selected by the ActiveReleasePath parameter. Changing that parameter
switches traffic between releases (blue/green), and switching back is the
rollback.
"""
from typing import Any, Dict

from .intrinsics import (
    deny_insecure_transport,
    encrypted_bucket_properties,
    get_att,
    output,
    parameter,
    ref,
    sub,
    tags,
)

# AWS managed CloudFront policies
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"
SECURITY_HEADERS_POLICY_ID = "67f7725c-6f97-4210-82d7-5512b31e9d03"

RELEASES_PREFIX = "releases"
INITIAL_RELEASE_PATH = f"/{RELEASES_PREFIX}/initial"
MANIFEST_NAME = "release.json"
# <meta name="release" content="..."> tag stamped into each release's index.html
RELEASE_META_NAME = "release"

WEBSITE_PARAMETERS = (
    "ProjectName",
    "Environment",
    "ActiveReleasePath",
    "PriceClass",
    "RateLimit",
    "AlarmEmail",
)

WEBSITE_OUTPUTS = (
    "WebsiteBucketName",
    "LoggingBucketName",
    "CloudFrontDistributionId",
    "CloudFrontDomainName",
    "WebsiteUrl",
    "WebACLArn",
    "AlarmTopicArn",
    "ActiveReleasePath",
)

MANAGED_RULE_GROUPS = (
    "AWSManagedRulesAmazonIpReputationList",
    "AWSManagedRulesCommonRuleSet",
    "AWSManagedRulesKnownBadInputsRuleSet",
)


def _visibility(metric_name: str) -> Dict[str, Any]:
    return {
        "SampledRequestsEnabled": True,
        "CloudWatchMetricsEnabled": True,
        "MetricName": metric_name,
    }


def _web_acl_rules() -> list:
    rules = []
    for priority, group in enumerate(MANAGED_RULE_GROUPS):
        rules.append({
            "Name": group,
            "Priority": priority,
            "OverrideAction": {"None": {}},
            "Statement": {
                "ManagedRuleGroupStatement": {"VendorName": "AWS", "Name": group}
            },
            "VisibilityConfig": _visibility(group),
        })

    rules.append({
        "Name": "RateLimitPerIp",
        "Priority": len(MANAGED_RULE_GROUPS),
        "Action": {"Block": {}},
        "Statement": {
            "RateBasedStatement": {"Limit": ref("RateLimit"), "AggregateKeyType": "IP"}
        },
        "VisibilityConfig": _visibility("RateLimitPerIp"),
    })
    return rules


def _alarm(
    description: str,
    namespace: str,
    metric_name: str,
    dimensions: list,
    threshold: float,
    statistic: str = "Average",
    evaluation_periods: int = 2,
) -> Dict[str, Any]:
    return {
        "Type": "AWS::CloudWatch::Alarm",
        "Properties": {
            "AlarmDescription": description,
            "Namespace": namespace,
            "MetricName": metric_name,
            "Dimensions": dimensions,
            "Statistic": statistic,
            "Period": 300,
            "EvaluationPeriods": evaluation_periods,
            "Threshold": threshold,
            "ComparisonOperator": "GreaterThanThreshold",
            "TreatMissingData": "notBreaching",
            "AlarmActions": [ref("AlarmTopic")],
            "OKActions": [ref("AlarmTopic")],
        },
    }


def build_website_template() -> Dict[str, Any]:
    """Build the website hosting template."""
    name_prefix = "${ProjectName}-${Environment}"
    distribution_dimensions = [
        {"Name": "DistributionId", "Value": ref("CloudFrontDistribution")},
        {"Name": "Region", "Value": "Global"},
    ]

    resources: Dict[str, Any] = {
        "LoggingBucket": {
            "Type": "AWS::S3::Bucket",
            "DeletionPolicy": "Retain",
            "UpdateReplacePolicy": "Retain",
            "Properties": {
                **encrypted_bucket_properties(),
                # CloudFront standard logging still writes through bucket ACLs
                "OwnershipControls": {"Rules": [{"ObjectOwnership": "BucketOwnerPreferred"}]},
                "LifecycleConfiguration": {
                    "Rules": [
                        {
                            "Id": "ArchiveThenExpireLogs",
                            "Status": "Enabled",
                            "Transitions": [
                                {"StorageClass": "STANDARD_IA", "TransitionInDays": 30}
                            ],
                            "ExpirationInDays": 90,
                        }
                    ]
                },
                "Tags": tags(Project=ref("ProjectName"), Environment=ref("Environment")),
            },
        },
        "LoggingBucketPolicy": {
            "Type": "AWS::S3::BucketPolicy",
            "Properties": {
                "Bucket": ref("LoggingBucket"),
                "PolicyDocument": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Sid": "AllowS3ServerAccessLogs",
                            "Effect": "Allow",
                            "Principal": {"Service": "logging.s3.amazonaws.com"},
                            "Action": "s3:PutObject",
                            "Resource": sub("${LoggingBucket.Arn}/s3-access/*"),
                            "Condition": {
                                "StringEquals": {"aws:SourceAccount": ref("AWS::AccountId")}
                            },
                        },
                        deny_insecure_transport("LoggingBucket"),
                    ],
                },
            },
        },
        "WebsiteBucket": {
            "Type": "AWS::S3::Bucket",
            "Properties": {
                **encrypted_bucket_properties(),
                "VersioningConfiguration": {"Status": "Enabled"},
                "LoggingConfiguration": {
                    "DestinationBucketName": ref("LoggingBucket"),
                    "LogFilePrefix": "s3-access/",
                },
                "LifecycleConfiguration": {
                    "Rules": [
                        {
                            "Id": "ExpireNoncurrentVersions",
                            "Status": "Enabled",
                            "NoncurrentVersionExpiration": {"NoncurrentDays": 30},
                            "AbortIncompleteMultipartUpload": {"DaysAfterInitiation": 7},
                        }
                    ]
                },
                "Tags": tags(Project=ref("ProjectName"), Environment=ref("Environment")),
            },
        },
        "OriginAccessControl": {
            "Type": "AWS::CloudFront::OriginAccessControl",
            "Properties": {
                "OriginAccessControlConfig": {
                    "Name": sub(f"{name_prefix}-oac"),
                    "Description": "Restricts website bucket reads to the distribution",
                    "OriginAccessControlOriginType": "s3",
                    "SigningBehavior": "always",
                    "SigningProtocol": "sigv4",
                }
            },
        },
        "WebsiteBucketPolicy": {
            "Type": "AWS::S3::BucketPolicy",
            "Properties": {
                "Bucket": ref("WebsiteBucket"),
                "PolicyDocument": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Sid": "AllowCloudFrontServicePrincipal",
                            "Effect": "Allow",
                            "Principal": {"Service": "cloudfront.amazonaws.com"},
                            "Action": "s3:GetObject",
                            "Resource": sub("${WebsiteBucket.Arn}/*"),
                            "Condition": {
                                "StringEquals": {
                                    "AWS:SourceArn": sub(
                                        "arn:aws:cloudfront::${AWS::AccountId}:distribution/${CloudFrontDistribution}"
                                    )
                                }
                            },
                        },
                        deny_insecure_transport("WebsiteBucket"),
                    ],
                },
            },
        },
        "WebACL": {
            "Type": "AWS::WAFv2::WebACL",
            "Properties": {
                "Name": sub(f"{name_prefix}-web-acl"),
                "Scope": "CLOUDFRONT",
                "DefaultAction": {"Allow": {}},
                "Rules": _web_acl_rules(),
                "VisibilityConfig": _visibility(sub(f"{name_prefix}-web-acl")),
            },
        },
        "CloudFrontDistribution": {
            "Type": "AWS::CloudFront::Distribution",
            "Properties": {
                "DistributionConfig": {
                    "Comment": sub(f"{name_prefix} static website"),
                    "Enabled": True,
                    "DefaultRootObject": "index.html",
                    "HttpVersion": "http2and3",
                    "IPV6Enabled": True,
                    "PriceClass": ref("PriceClass"),
                    "WebACLId": get_att("WebACL", "Arn"),
                    "Origins": [
                        {
                            "Id": "WebsiteBucketOrigin",
                            "DomainName": get_att("WebsiteBucket", "RegionalDomainName"),
                            "OriginPath": ref("ActiveReleasePath"),
                            "OriginAccessControlId": get_att("OriginAccessControl", "Id"),
                            "S3OriginConfig": {"OriginAccessIdentity": ""},
                        }
                    ],
                    "DefaultCacheBehavior": {
                        "TargetOriginId": "WebsiteBucketOrigin",
                        "ViewerProtocolPolicy": "redirect-to-https",
                        "AllowedMethods": ["GET", "HEAD", "OPTIONS"],
                        "CachedMethods": ["GET", "HEAD"],
                        "Compress": True,
                        "CachePolicyId": CACHING_OPTIMIZED_POLICY_ID,
                        "ResponseHeadersPolicyId": SECURITY_HEADERS_POLICY_ID,
                    },
                    # Client-side routing: unknown paths fall back to the app shell
                    "CustomErrorResponses": [
                        {
                            "ErrorCode": code,
                            "ResponseCode": 200,
                            "ResponsePagePath": "/index.html",
                            "ErrorCachingMinTTL": 10,
                        }
                        for code in (403, 404)
                    ],
                    "Logging": {
                        "Bucket": get_att("LoggingBucket", "DomainName"),
                        "Prefix": "cloudfront/",
                        "IncludeCookies": False,
                    },
                    "ViewerCertificate": {"CloudFrontDefaultCertificate": True},
                },
                "Tags": tags(Project=ref("ProjectName"), Environment=ref("Environment")),
            },
        },
        # The aws/sns managed key cannot grant CloudWatch, so alarms need their own key
        "AlarmTopicKey": {
            "Type": "AWS::KMS::Key",
            "Properties": {
                "Description": sub(f"{name_prefix} alarm topic encryption"),
                "EnableKeyRotation": True,
                "KeyPolicy": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Sid": "AccountAdministration",
                            "Effect": "Allow",
                            "Principal": {"AWS": sub("arn:aws:iam::${AWS::AccountId}:root")},
                            "Action": "kms:*",
                            "Resource": "*",
                        },
                        {
                            "Sid": "CloudWatchAlarms",
                            "Effect": "Allow",
                            "Principal": {"Service": "cloudwatch.amazonaws.com"},
                            "Action": ["kms:Decrypt", "kms:GenerateDataKey*"],
                            "Resource": "*",
                        },
                    ],
                },
            },
        },
        "AlarmTopic": {
            "Type": "AWS::SNS::Topic",
            "Properties": {
                "DisplayName": sub(f"{name_prefix} website alarms"),
                "KmsMasterKeyId": ref("AlarmTopicKey"),
            },
        },
        "AlarmEmailSubscription": {
            "Type": "AWS::SNS::Subscription",
            "Condition": "HasAlarmEmail",
            "Properties": {
                "TopicArn": ref("AlarmTopic"),
                "Protocol": "email",
                "Endpoint": ref("AlarmEmail"),
            },
        },
        "High5xxErrorRateAlarm": _alarm(
            "CloudFront 5xx error rate above 5%",
            "AWS/CloudFront", "5xxErrorRate", distribution_dimensions, 5,
        ),
        "High4xxErrorRateAlarm": _alarm(
            "CloudFront 4xx error rate above 15%",
            "AWS/CloudFront", "4xxErrorRate", distribution_dimensions, 15,
        ),
        "WafBlockedRequestsAlarm": _alarm(
            "WAF blocked more than 100 requests in 5 minutes",
            "AWS/WAFV2", "BlockedRequests",
            [
                {"Name": "WebACL", "Value": sub(f"{name_prefix}-web-acl")},
                {"Name": "Rule", "Value": "ALL"},
            ],
            100, statistic="Sum", evaluation_periods=1,
        ),
    }

    outputs = {
        "WebsiteBucketName": output(ref("WebsiteBucket"), "Bucket holding every release", True, "WebsiteBucketName"),
        "LoggingBucketName": output(ref("LoggingBucket"), "Access log bucket", True, "LoggingBucketName"),
        "CloudFrontDistributionId": output(
            ref("CloudFrontDistribution"), "Distribution ID (cache invalidation)", True, "CloudFrontDistributionId"
        ),
        "CloudFrontDomainName": output(
            get_att("CloudFrontDistribution", "DomainName"), "Distribution domain name", True, "CloudFrontDomainName"
        ),
        "WebsiteUrl": output(sub("https://${CloudFrontDistribution.DomainName}"), "Public website URL", True, "WebsiteUrl"),
        "WebACLArn": output(get_att("WebACL", "Arn"), "WAF web ACL protecting the distribution", True, "WebACLArn"),
        "AlarmTopicArn": output(ref("AlarmTopic"), "SNS topic receiving alarm notifications", True, "AlarmTopicArn"),
        "ActiveReleasePath": output(ref("ActiveReleasePath"), "Release directory currently served", False),
    }

    return {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Description": "Static website hosting: S3 origin behind CloudFront with OAC and WAF",
        "Parameters": {
            "ProjectName": parameter(
                "Prefix for resource names", "devsecops-portfolio",
                AllowedPattern="^[a-z][a-z0-9-]{1,38}[a-z0-9]$",
            ),
            "Environment": parameter(
                "Deployment environment", "prod", AllowedValues=["dev", "staging", "prod"]
            ),
            "ActiveReleasePath": parameter(
                "Release directory served by CloudFront",
                INITIAL_RELEASE_PATH,
                AllowedPattern=f"^/{RELEASES_PREFIX}/[A-Za-z0-9._-]+$",
            ),
            "PriceClass": parameter(
                "CloudFront price class", "PriceClass_100",
                AllowedValues=["PriceClass_100", "PriceClass_200", "PriceClass_All"],
            ),
            "RateLimit": parameter(
                "Requests per 5 minutes allowed from a single IP", 2000, "Number", MinValue=100
            ),
            "AlarmEmail": parameter("Email notified by alarms (empty to skip)", ""),
        },
        "Conditions": {
            "HasAlarmEmail": {"Fn::Not": [{"Fn::Equals": [ref("AlarmEmail"), ""]}]},
        },
        "Resources": resources,
        "Outputs": outputs,
    }

