"""CDK app entry point for the web application platform.

One set of stacks per environment, named {project}-{env}-<name>:
  - vpc:            VPC, subnets, ALB/ECS security groups
  - s3:             application files bucket (reused in prod)
  - bastion:        SSH jump host (dev/prod), deployed before rds
  - rds:            MySQL instance, credentials, user bootstrap
  - ecr:            backend/frontend image repositories
  - ecs:            cluster, ALB, backend/job/frontend services
  - logs-analytics: 5xx/operation logs to S3 + Athena tables
  - ses:            SES domain identity (dev, opt-in)
  - waf:            WAFv2 web ACL on the ALB (not in dev)
  - alarms:         CloudWatch alarms -> email/Slack
Plus the account-wide {project}-github-actions stack when a repo is given.

Deploy all:    cdk deploy --all -c env=dev
Deploy one:    cdk deploy sample-app-dev-ecs -c env=dev
Destroy all:   cdk destroy --all -c env=dev
"""
import dataclasses
import logging

import aws_cdk as cdk

from stacks.alarms_stack import AlarmsStack
from stacks.bastion_stack import BastionStack
from stacks.config import AppSettings
from stacks.ecr_stack import EcrStack
from stacks.ecs_stack import EcsStack
from stacks.github_actions_stack import GitHubActionsStack
from stacks.logs_analytics_stack import LogsAnalyticsStack
from stacks.lookups import lookups_for
from stacks.naming import ecs_log_group_name
from stacks.rds_stack import RdsStack
from stacks.ses_stack import SesStack
from stacks.storage_stack import StorageStack
from stacks.vpc_stack import VpcStack
from stacks.waf_stack import WafStack

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

app = cdk.App()
settings = AppSettings.from_app(app)
lookups = lookups_for(settings)
project, env = settings.project, settings.environment

vpc = VpcStack(app, settings.stack_id("vpc"), settings=settings,
               description=f"{settings.prefix} - VPC, subnets and security groups")

storage = StorageStack(app, settings.stack_id("s3"), settings=settings,
                       description=f"{settings.prefix} - application files bucket")

bastion = None
if settings.enable_bastion:
    # Publishes the bastion SG key the rds stack reads
    bastion = BastionStack(app, settings.stack_id("bastion"), settings=settings, vpc=vpc.vpc,
                           description=f"{settings.prefix} - SSH bastion host")

database = RdsStack(app, settings.stack_id("rds"), settings=settings,
                    vpc=vpc.vpc,
                    ecs_security_group=vpc.ecs_security_group,
                    lookups=lookups,
                    allow_bastion_access=bastion is not None,
                    description=f"{settings.prefix} - MySQL database")
if bastion is not None:
    database.add_dependency(bastion)

ecr = EcrStack(app, settings.stack_id("ecr"), settings=settings,
               description=f"{settings.prefix} - container image repositories")

ecs = EcsStack(app, settings.stack_id("ecs"), settings=settings,
               vpc=vpc.vpc,
               alb_security_group=vpc.alb_security_group,
               ecs_security_group=vpc.ecs_security_group,
               bucket=storage.bucket,
               db_secret=database.db_secret,
               app_user_secret=database.app_user_secret,
               backend_repository=ecr.backend_repository,
               frontend_repository=ecr.frontend_repository,
               lookups=lookups,
               description=f"{settings.prefix} - ECS services and load balancer")
# Services read rds/* keys from the parameter bridge
ecs.add_dependency(database)

if settings.enable_logs_analytics:
    analytics = LogsAnalyticsStack(app, settings.stack_id("logs-analytics"), settings=settings,
                                   bucket=storage.bucket,
                                   backend_log_group_name=ecs_log_group_name(project, env, "backend"),
                                   job_log_group_name=ecs_log_group_name(project, env, "jobs"),
                                   description=f"{settings.prefix} - log analytics (Firehose, Glue, Athena)")
    analytics.add_dependency(ecs)

if settings.enable_ses and settings.ses_domain:
    SesStack(app, settings.stack_id("ses"), settings=settings,
             domain_name=settings.ses_domain,
             mail_from_subdomain=settings.ses_mail_from,
             description=f"{settings.prefix} - SES domain identity")

if settings.enable_waf:
    WafStack(app, settings.stack_id("waf"), settings=settings,
             load_balancer_arn=ecs.alb.load_balancer_arn,
             description=f"{settings.prefix} - WAF for the load balancer")

if settings.enable_alarms:
    alarms = AlarmsStack(app, settings.stack_id("alarms"), settings=settings,
                         description=f"{settings.prefix} - CloudWatch alarms")
    alarms.add_dependency(ecs)
    alarms.add_dependency(database)

if settings.github_repository:
    # Account-wide: one OIDC provider shared by every environment
    GitHubActionsStack(app, f"{project}-github-actions",
                       settings=dataclasses.replace(settings, environment="shared"),
                       github_repository=settings.github_repository,
                       allowed_branches=settings.github_branches,
                       description=f"{project} - GitHub Actions OIDC deploy role")

tags: dict = app.node.try_get_context("tags") or {}
for tag_key, tag_value in tags.items():
    cdk.Tags.of(app).add(tag_key, tag_value)

app.synth()
