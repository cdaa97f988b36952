# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
DEFAULT_REGION = "us-east-1"
EXAMPLE_AMI_ID = "ami-12c6146b"
