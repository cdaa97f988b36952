# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from collections.abc import Iterator
from os import environ
from unittest.mock import patch

from moto import mock_aws
from pytest import fixture

from asg_reconciler.reconcile.context import ReconcileContext
from asg_reconciler.util.session_manager import AwsClients
from tests import DEFAULT_REGION
from tests.test_utils.fake_clock import FakeClock
from tests.test_utils.mock_clients import mock_clients, mock_context


@fixture(autouse=True)
def aws_credentials() -> Iterator[None]:
    creds = {
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
        "AWS_SECURITY_TOKEN": "testing",
        "AWS_SESSION_TOKEN": "testing",
        "AWS_DEFAULT_REGION": DEFAULT_REGION,
    }
    with patch.dict(environ, creds, clear=True):
        yield


@fixture
def moto_backend() -> Iterator[None]:
    with mock_aws():
        yield


@fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@fixture
def clients() -> AwsClients:
    return mock_clients()


@fixture
def context(clients: AwsClients, fake_clock: FakeClock) -> ReconcileContext:
    return mock_context(clients, fake_clock)
