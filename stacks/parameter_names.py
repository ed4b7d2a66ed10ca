"""SSM Parameter Store key builders.

Every cross-stack value is exchanged under /{project}/{environment}/{category}/{name}.
Keys are only ever built here so producers and consumers agree on them.
"""


def parameter_key(project: str, environment: str, category: str, name: str) -> str:
    for label, segment in (("project", project), ("environment", environment),
                           ("category", category), ("name", name)):
        if not segment or "/" in segment:
            raise ValueError(f"Invalid parameter key segment {label}={segment!r}")
    return f"/{project}/{environment}/{category}/{name}"


def rds_security_group_id(project: str, environment: str) -> str:
    return parameter_key(project, environment, "rds", "security-group-id")


def rds_endpoint_address(project: str, environment: str) -> str:
    return parameter_key(project, environment, "rds", "endpoint-address")


def rds_endpoint_port(project: str, environment: str) -> str:
    return parameter_key(project, environment, "rds", "endpoint-port")


def rds_instance_identifier(project: str, environment: str) -> str:
    return parameter_key(project, environment, "rds", "instance-identifier")


def ecs_cluster_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ecs", "cluster-name")


def ecs_backend_service_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ecs", "backend-service-name")


def ecs_frontend_service_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ecs", "frontend-service-name")


def ecs_job_service_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ecs", "job-service-name")


def alb_full_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "alb", "load-balancer-full-name")


def bastion_security_group_id(project: str, environment: str) -> str:
    return parameter_key(project, environment, "bastion", "security-group-id")


def webauthn_rp_id(project: str, environment: str) -> str:
    return parameter_key(project, environment, "webauthn", "rp-id")


def webauthn_origin(project: str, environment: str) -> str:
    return parameter_key(project, environment, "webauthn", "origin")


def webauthn_strict_verify(project: str, environment: str) -> str:
    return parameter_key(project, environment, "webauthn", "strict-verify")


def acm_cert_arn(project: str, environment: str) -> str:
    return parameter_key(project, environment, "acm", "cert-arn")


def ses_from_address(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ses", "from-address")


def ses_sender_name(project: str, environment: str) -> str:
    return parameter_key(project, environment, "ses", "sender-name")


def mail_reply_to(project: str, environment: str) -> str:
    return parameter_key(project, environment, "mail", "reply-to")
