"""Tests for parameter bridge key builders."""
import pytest

from stacks import parameter_names


@pytest.mark.parametrize("builder, expected", [
    (parameter_names.rds_security_group_id, "/sample-app/dev/rds/security-group-id"),
    (parameter_names.rds_endpoint_address, "/sample-app/dev/rds/endpoint-address"),
    (parameter_names.rds_endpoint_port, "/sample-app/dev/rds/endpoint-port"),
    (parameter_names.rds_instance_identifier, "/sample-app/dev/rds/instance-identifier"),
    (parameter_names.ecs_cluster_name, "/sample-app/dev/ecs/cluster-name"),
    (parameter_names.ecs_backend_service_name, "/sample-app/dev/ecs/backend-service-name"),
    (parameter_names.ecs_frontend_service_name, "/sample-app/dev/ecs/frontend-service-name"),
    (parameter_names.ecs_job_service_name, "/sample-app/dev/ecs/job-service-name"),
    (parameter_names.alb_full_name, "/sample-app/dev/alb/load-balancer-full-name"),
    (parameter_names.bastion_security_group_id, "/sample-app/dev/bastion/security-group-id"),
    (parameter_names.webauthn_rp_id, "/sample-app/dev/webauthn/rp-id"),
    (parameter_names.webauthn_origin, "/sample-app/dev/webauthn/origin"),
    (parameter_names.webauthn_strict_verify, "/sample-app/dev/webauthn/strict-verify"),
    (parameter_names.acm_cert_arn, "/sample-app/dev/acm/cert-arn"),
    (parameter_names.ses_from_address, "/sample-app/dev/ses/from-address"),
    (parameter_names.ses_sender_name, "/sample-app/dev/ses/sender-name"),
    (parameter_names.mail_reply_to, "/sample-app/dev/mail/reply-to"),
])
def test_key_layout(builder, expected):
    assert builder("sample-app", "dev") == expected


def test_keys_are_deterministic():
    assert parameter_names.ecs_cluster_name("shop", "prod") == parameter_names.ecs_cluster_name("shop", "prod")


@pytest.mark.parametrize("project, environment", [("", "dev"), ("sample-app", ""), ("a/b", "dev")])
def test_invalid_segments(project, environment):
    with pytest.raises(ValueError, match="Invalid parameter key segment"):
        parameter_names.rds_endpoint_address(project, environment)
