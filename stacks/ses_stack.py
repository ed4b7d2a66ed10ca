"""SES stack - domain identity with DKIM records in the domain's hosted zone."""
from constructs import Construct
from aws_cdk import (
    aws_route53 as route53,
    aws_ses as ses,
)

from stacks.base_stack import BaseStack


class SesStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, domain_name: str,
                 mail_from_subdomain: str = "mail", **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        hosted_zone = route53.HostedZone.from_lookup(self, "HostedZone", domain_name=domain_name)

        self.identity = ses.EmailIdentity(
            self,
            "EmailIdentity",
            identity=ses.Identity.public_hosted_zone(hosted_zone),
            mail_from_domain=f"{mail_from_subdomain}.{domain_name}",
        )
