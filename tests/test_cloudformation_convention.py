import io
import json
import tempfile
import unittest
from pathlib import Path

from botocore.exceptions import NoCredentialsError

from deploy_agent.aws import DeployAwsCloudFormationConvention, StackEventLogger, WarningLedger
from deploy_agent.config import AwsConfig
from deploy_agent.deployment import RunningDeployment
from deploy_agent.errors import (
    DeploymentError,
    ErrorCode,
    PermissionException,
    RollbackException,
    UnknownException,
)
from deploy_agent.variables import SpecialVariables, VariableDictionary

from stack_helpers import STACK_ID, STACK_NAME, client_error, make_client, stack_event

TEMPLATE = '{"Resources": {"Bucket": {"Type": "AWS::S3::Bucket"}}}'


def described(status: str, outputs=None) -> dict:
    return {
        "Stacks": [{
            "StackId": STACK_ID,
            "StackName": STACK_NAME,
            "StackStatus": status,
            "Outputs": [{"OutputKey": k, "OutputValue": v} for k, v in (outputs or {}).items()],
        }]
    }


MISSING = client_error("ValidationError", f"Stack with id {STACK_NAME} does not exist")


class DeployAwsCloudFormationConventionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.variables = VariableDictionary({
            SpecialVariables.Action.NAME: "Deploy stack",
            SpecialVariables.Aws.STACK_NAME: STACK_NAME,
            SpecialVariables.Aws.TEMPLATE: TEMPLATE,
            SpecialVariables.Aws.TEMPLATE_PARAMETERS: '{"Environment": "prod"}',
            SpecialVariables.Aws.IAM_CAPABILITIES: "CAPABILITY_IAM",
        })
        self.deployment = RunningDeployment(None, self.variables)
        self.stream = io.StringIO()
        self.ledger = WarningLedger()

    def convention(self, client) -> DeployAwsCloudFormationConvention:
        return DeployAwsCloudFormationConvention(
            lambda: client,
            StackEventLogger(self.ledger),
            AwsConfig(poll_interval=0, wait_timeout=5),
            stream=self.stream,
        )

    def test_creates_missing_stack_and_publishes_outputs(self) -> None:
        client = make_client(events=[[stack_event("CREATE_COMPLETE")]])
        client.describe_stacks.side_effect = [MISSING, described("CREATE_COMPLETE", {"BucketName": "site-bucket"})]
        client.create_stack.return_value = {"StackId": STACK_ID}

        self.convention(client).install(self.deployment)

        kwargs = client.create_stack.call_args.kwargs
        self.assertEqual(kwargs["StackName"], STACK_NAME)
        self.assertEqual(kwargs["TemplateBody"], TEMPLATE)
        self.assertEqual(kwargs["Parameters"], [{"ParameterKey": "Environment", "ParameterValue": "prod"}])
        self.assertEqual(kwargs["Capabilities"], ["CAPABILITY_IAM"])
        self.assertEqual(self.variables.get("AwsOutputs[StackId]"), STACK_ID)
        self.assertEqual(self.variables.get("AwsOutputs[BucketName]"), "site-bucket")
        self.assertIn("##octopus[setVariable", self.stream.getvalue())

    def test_updates_existing_stack(self) -> None:
        client = make_client(
            events=[[stack_event("UPDATE_COMPLETE")]],
            describe=described("CREATE_COMPLETE")["Stacks"][0],
        )

        self.convention(client).install(self.deployment)

        client.update_stack.assert_called_once()
        client.create_stack.assert_not_called()
        self.assertEqual(self.variables.get("AwsOutputs[StackId]"), STACK_ID)

    def test_no_updates_is_not_a_failure(self) -> None:
        client = make_client(describe=described("UPDATE_COMPLETE", {"Url": "https://x"})["Stacks"][0])
        client.update_stack.side_effect = client_error(
            "ValidationError", "No updates are to be performed.", operation="UpdateStack"
        )

        self.convention(client).install(self.deployment)

        client.get_paginator.assert_not_called()
        self.assertEqual(self.variables.get("AwsOutputs[Url]"), "https://x")

    def test_rollback_during_update_fails_the_deployment(self) -> None:
        client = make_client(
            events=[[
                stack_event("UPDATE_ROLLBACK_COMPLETE"),
                stack_event("UPDATE_FAILED", logical_id="Bucket", resource_type="AWS::S3::Bucket",
                            reason="Access denied for bucket"),
            ]],
            describe=described("UPDATE_COMPLETE")["Stacks"][0],
        )

        with self.assertRaises(RollbackException) as raised:
            self.convention(client).install(self.deployment)
        self.assertEqual(raised.exception.resource, "Bucket")
        self.assertEqual(raised.exception.code, ErrorCode.ROLLBACK_DETECTED)

    def test_update_permission_error_is_classified(self) -> None:
        client = make_client(describe=described("UPDATE_COMPLETE")["Stacks"][0])
        client.update_stack.side_effect = client_error("AccessDenied", "nope", operation="UpdateStack", status=403)

        with self.assertRaises(PermissionException) as raised:
            self.convention(client).install(self.deployment)
        self.assertEqual(raised.exception.code, ErrorCode.DEPLOY_PERMISSION)
        self.assertIn(ErrorCode.SERVICE_EXCEPTION, self.ledger)

    def test_missing_credentials_on_create_is_unknown_failure(self) -> None:
        client = make_client()
        client.create_stack.side_effect = NoCredentialsError()

        with self.assertRaises(UnknownException) as raised:
            self.convention(client).install(self.deployment)
        self.assertEqual(raised.exception.code, ErrorCode.DEPLOY_UNKNOWN)
        self.assertIsInstance(raised.exception.__cause__, NoCredentialsError)

    def test_output_permission_error_is_downgraded_to_warning(self) -> None:
        client = make_client(events=[[stack_event("UPDATE_COMPLETE")]])
        client.describe_stacks.side_effect = [
            described("UPDATE_COMPLETE"),
            client_error("AccessDenied", "describe denied", status=403),
        ]

        self.convention(client).install(self.deployment)

        self.assertIn(ErrorCode.DESCRIBE_PERMISSION, self.ledger)
        self.assertEqual(self.variables.get("AwsOutputs[StackId]"), STACK_ID)

    def test_rollback_complete_stack_is_replaced(self) -> None:
        client = make_client(events=[[stack_event("DELETE_COMPLETE")]])
        client.describe_stacks.side_effect = [described("ROLLBACK_COMPLETE"), MISSING]
        client.create_stack.return_value = {"StackId": STACK_ID}

        self.convention(client).install(self.deployment)

        client.delete_stack.assert_called_once_with(StackName=STACK_NAME)
        client.create_stack.assert_called_once()

    def test_skips_outputs_when_not_waiting(self) -> None:
        self.variables.set(SpecialVariables.Aws.WAIT_FOR_COMPLETION, "False")
        client = make_client()
        client.create_stack.return_value = {"StackId": STACK_ID}

        self.convention(client).install(self.deployment)

        client.get_paginator.assert_not_called()
        self.assertEqual(client.describe_stacks.call_count, 1)
        self.assertEqual(self.variables.get("AwsOutputs[StackId]"), STACK_ID)

    def test_template_file_is_read_from_current_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "stack.json").write_text(TEMPLATE, encoding="utf-8")
            self.deployment.staging_directory = tmp
            self.variables.set(SpecialVariables.Aws.TEMPLATE, "stack.json")
            self.variables.set(SpecialVariables.Aws.TEMPLATE_PARAMETERS, json.dumps(
                [{"ParameterKey": "Environment", "ParameterValue": "test"}]
            ))
            client = make_client(events=[[stack_event("CREATE_COMPLETE")]])
            client.create_stack.return_value = {"StackId": STACK_ID}

            self.convention(client).install(self.deployment)

        kwargs = client.create_stack.call_args.kwargs
        self.assertEqual(kwargs["TemplateBody"], TEMPLATE)
        self.assertEqual(kwargs["Parameters"], [{"ParameterKey": "Environment", "ParameterValue": "test"}])

    def test_missing_stack_name_is_an_error(self) -> None:
        self.variables.remove(SpecialVariables.Aws.STACK_NAME)
        with self.assertRaises(DeploymentError):
            self.convention(make_client()).install(self.deployment)


if __name__ == "__main__":
    unittest.main()
