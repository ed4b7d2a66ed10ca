"""WAF stack - regional web ACL in front of the application load balancer.

Managed rule groups run in count mode (uploads would otherwise trip the body
size rules); only the per-IP rate limit blocks.
"""
from constructs import Construct
from aws_cdk import aws_wafv2 as wafv2

from stacks.base_stack import BaseStack

MANAGED_RULE_GROUPS = (
    ("AWSManagedRulesCommonRuleSet", "Common", 10),
    ("AWSManagedRulesKnownBadInputsRuleSet", "KnownBadInputs", 20),
    ("AWSManagedRulesAmazonIpReputationList", "IpReputation", 30),
)
RATE_LIMIT_PER_5_MINUTES = 2000


def _visibility(metric_name: str) -> wafv2.CfnWebACL.VisibilityConfigProperty:
    return wafv2.CfnWebACL.VisibilityConfigProperty(
        cloud_watch_metrics_enabled=True,
        sampled_requests_enabled=True,
        metric_name=metric_name,
    )


class WafStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, load_balancer_arn: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        rules = [
            wafv2.CfnWebACL.RuleProperty(
                name=f"AWS-{group}",
                priority=priority,
                override_action=wafv2.CfnWebACL.OverrideActionProperty(count={}),
                statement=wafv2.CfnWebACL.StatementProperty(
                    managed_rule_group_statement=wafv2.CfnWebACL.ManagedRuleGroupStatementProperty(
                        vendor_name="AWS",
                        name=group,
                    )
                ),
                visibility_config=_visibility(metric),
            )
            for group, metric, priority in MANAGED_RULE_GROUPS
        ]
        rules.append(
            wafv2.CfnWebACL.RuleProperty(
                name="RateLimit",
                priority=40,
                action=wafv2.CfnWebACL.RuleActionProperty(block={}),
                statement=wafv2.CfnWebACL.StatementProperty(
                    rate_based_statement=wafv2.CfnWebACL.RateBasedStatementProperty(
                        limit=RATE_LIMIT_PER_5_MINUTES,
                        aggregate_key_type="IP",
                    )
                ),
                visibility_config=_visibility("RateLimit"),
            )
        )

        self.web_acl = wafv2.CfnWebACL(
            self,
            "WebAcl",
            name=f"{self.prefix}-waf",
            scope="REGIONAL",
            default_action=wafv2.CfnWebACL.DefaultActionProperty(allow={}),
            visibility_config=_visibility(f"{self.prefix}-waf"),
            rules=rules,
        )

        wafv2.CfnWebACLAssociation(
            self,
            "WebAclAssociation",
            resource_arn=load_balancer_arn,
            web_acl_arn=self.web_acl.attr_arn,
        )
