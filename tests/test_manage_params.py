"""Tests for the operator parameter script."""
from unittest.mock import MagicMock

import pytest

from stacks.parameter_store import ParameterNotFoundError


@pytest.fixture
def manage_params(load_script):
    return load_script("manage_params")


@pytest.fixture
def store():
    return MagicMock()


def test_managed_keys(manage_params):
    keys = manage_params.managed_keys("sample-app", "prod")

    assert keys["rp_id"] == ("WEBAUTHN_RP_ID", "/sample-app/prod/webauthn/rp-id")
    assert keys["reply_to"] == ("MAIL_REPLY_TO_ADDRESS", "/sample-app/prod/mail/reply-to")
    assert len(keys) == 6


def test_set_publishes_only_given_values(manage_params, store):
    store.publish.return_value = 1
    values = {"rp_id": "example.com", "origin": None, "project": "sample-app"}

    assert manage_params.set_params(store, "sample-app", "prod", values) == 1
    store.publish.assert_called_once()
    assert store.publish.call_args.args[:2] == ("/sample-app/prod/webauthn/rp-id", "example.com")


def test_set_rejects_bad_strict_flag(manage_params, store):
    with pytest.raises(ValueError):
        manage_params.set_params(store, "sample-app", "prod", {"strict_verify": "yes"})
    store.publish.assert_not_called()


def test_preflight_reports_missing(manage_params, store, capsys):
    store.require.side_effect = ParameterNotFoundError(["/sample-app/prod/webauthn/origin"])

    assert manage_params.preflight(store, "sample-app", "prod") is False
    assert "/sample-app/prod/webauthn/origin" in capsys.readouterr().out


def test_preflight_ok(manage_params, store):
    store.require.return_value = {}
    assert manage_params.preflight(store, "sample-app", "prod") is True


def test_main_exit_code(manage_params, monkeypatch):
    store = MagicMock()
    store.require.side_effect = ParameterNotFoundError(["/sample-app/dev/webauthn/rp-id"])
    monkeypatch.setattr(manage_params, "ParameterStore", lambda region=None: store)

    assert manage_params.main(["preflight", "dev"]) == 1
