import io
import unittest

from botocore.exceptions import EndpointConnectionError, NoRegionError

from deploy_agent.aws import (
    CloudFormationInstallationConventionBase,
    StackArn,
    StackEvent,
    StackEventLogger,
    WarningLedger,
    get_last_stack_event,
)
from deploy_agent.deployment import RunningDeployment
from deploy_agent.errors import (
    ErrorCode,
    ErrorKind,
    PermissionException,
    RollbackException,
    UnknownException,
)
from deploy_agent.processes import parse_service_message
from deploy_agent.variables import SpecialVariables, VariableDictionary

from stack_helpers import STACK_ID, STACK_NAME, client_error, make_client, stack_event


class Orchestrator(CloudFormationInstallationConventionBase):
    def install(self, deployment) -> None:
        pass


def event(status: str, **kwargs) -> StackEvent:
    return StackEvent.from_response(stack_event(status, **kwargs))


class StackQueryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.orchestrator = Orchestrator(StackEventLogger())
        self.stack = StackArn(STACK_NAME)

    def test_query_stack_returns_description(self) -> None:
        client = make_client(describe={
            "StackId": STACK_ID,
            "StackName": STACK_NAME,
            "StackStatus": "CREATE_COMPLETE",
            "Outputs": [{"OutputKey": "Url", "OutputValue": "https://example.test"}],
        })
        description = self.orchestrator.query_stack(lambda: client, self.stack)
        self.assertEqual(description.status, "CREATE_COMPLETE")
        self.assertEqual(description.outputs, {"Url": "https://example.test"})

    def test_query_stack_missing_stack_is_none(self) -> None:
        self.assertIsNone(self.orchestrator.query_stack(lambda: make_client(), self.stack))

    def test_query_stack_access_denied_is_permission_failure(self) -> None:
        client = make_client(describe=client_error("AccessDenied", "not authorised", status=403))
        with self.assertRaises(PermissionException) as raised:
            self.orchestrator.query_stack(lambda: client, self.stack)
        error = raised.exception
        self.assertEqual(error.kind, ErrorKind.PERMISSION)
        self.assertEqual(error.code, ErrorCode.DESCRIBE_PERMISSION)
        self.assertTrue(str(error).startswith("AWS-CLOUDFORMATION-ERROR-0004"))
        self.assertIn("not able to generate any output variables", str(error))
        self.assertIn("not authorised", str(error))

    def test_query_stack_other_errors_are_unknown(self) -> None:
        client = make_client(describe=client_error("Throttling", "slow down"))
        with self.assertRaises(UnknownException) as raised:
            self.orchestrator.query_stack(lambda: client, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.DESCRIBE_UNKNOWN)
        self.assertIn("AWS-CLOUDFORMATION-ERROR-0005", str(raised.exception))

    def test_query_stack_connection_failure_is_unknown(self) -> None:
        client = make_client(describe=EndpointConnectionError(
            endpoint_url="https://cloudformation.us-east-1.amazonaws.com/"
        ))
        with self.assertRaises(UnknownException) as raised:
            self.orchestrator.query_stack(lambda: client, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.DESCRIBE_UNKNOWN)
        self.assertIsInstance(raised.exception.__cause__, EndpointConnectionError)

    def test_query_stack_client_construction_failure_is_unknown(self) -> None:
        def factory():
            raise NoRegionError()

        with self.assertRaises(UnknownException) as raised:
            self.orchestrator.query_stack(factory, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.DESCRIBE_UNKNOWN)
        self.assertIn("region", str(raised.exception))

    def test_last_event_honours_predicate_and_order(self) -> None:
        client = make_client(events=[
            [stack_event("CREATE_IN_PROGRESS", logical_id="Bucket", resource_type="AWS::S3::Bucket")],
            [stack_event("CREATE_IN_PROGRESS")],
        ])
        newest = get_last_stack_event(lambda: client, self.stack)
        self.assertEqual(newest.logical_resource_id, "Bucket")
        stack_level = get_last_stack_event(lambda: client, self.stack, lambda e: e.is_stack_event())
        self.assertEqual(stack_level.logical_resource_id, STACK_NAME)

    def test_last_event_errors_are_classified(self) -> None:
        denied = make_client(events=client_error("AccessDenied", operation="DescribeStackEvents"))
        with self.assertRaises(PermissionException) as raised:
            get_last_stack_event(lambda: denied, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.EVENTS_PERMISSION)

        broken = make_client(events=client_error("InternalFailure", operation="DescribeStackEvents"))
        with self.assertRaises(UnknownException) as raised:
            get_last_stack_event(lambda: broken, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.EVENTS_UNKNOWN)

        missing = make_client(events=client_error("ValidationError", "Stack with id x does not exist"))
        self.assertIsNone(get_last_stack_event(lambda: missing, self.stack))

        offline = make_client(events=EndpointConnectionError(endpoint_url="https://cloudformation.invalid/"))
        with self.assertRaises(UnknownException) as raised:
            get_last_stack_event(lambda: offline, self.stack)
        self.assertEqual(raised.exception.code, ErrorCode.EVENTS_UNKNOWN)

    def test_last_event_search_can_stop_early(self) -> None:
        client = make_client(events=[[
            stack_event("UPDATE_IN_PROGRESS"),
            stack_event("CREATE_FAILED", logical_id="Queue", resource_type="AWS::SQS::Queue"),
        ]])
        found = get_last_stack_event(
            lambda: client, self.stack, lambda e: e.status.endswith("_FAILED"), stop_at=StackEvent.starts_operation
        )
        self.assertIsNone(found)


class RollbackWatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.orchestrator = Orchestrator(StackEventLogger())
        self.stack = StackArn(STACK_NAME)
        self.client = make_client(events=[[
            stack_event("UPDATE_ROLLBACK_IN_PROGRESS", reason="Resource failed"),
            stack_event("CREATE_FAILED", logical_id="Bucket", resource_type="AWS::S3::Bucket",
                        reason="Bucket already exists"),
        ]])

    def watcher(self, **kwargs):
        return self.orchestrator.make_rollback_watcher(lambda: self.client, self.stack, **kwargs)

    def test_success_event_does_not_raise(self) -> None:
        self.watcher()(event("CREATE_COMPLETE"))
        self.watcher()(event("UPDATE_IN_PROGRESS"))

    def test_rollback_reports_failed_resource(self) -> None:
        with self.assertRaises(RollbackException) as raised:
            self.watcher()(event("UPDATE_ROLLBACK_IN_PROGRESS"))
        error = raised.exception
        self.assertEqual(error.kind, ErrorKind.ROLLBACK)
        self.assertEqual(error.code, ErrorCode.ROLLBACK_DETECTED)
        self.assertEqual(error.resource, "Bucket")
        self.assertEqual(error.reason, "Bucket already exists")
        self.assertIn("UPDATE_ROLLBACK_IN_PROGRESS", str(error))

    def test_expect_success_and_missing_event_matrix(self) -> None:
        cases = [
            (True, True, True),
            (True, False, False),
            (False, True, False),
            (False, False, False),
        ]
        for expect_success, missing_is_failure, raises in cases:
            with self.subTest(expect_success=expect_success, missing_is_failure=missing_is_failure):
                handler = self.watcher(expect_success=expect_success, missing_is_failure=missing_is_failure)
                if raises:
                    with self.assertRaises(RollbackException) as raised:
                        handler(None)
                    self.assertEqual(raised.exception.code, ErrorCode.STACK_MISSING)
                else:
                    handler(None)

    def test_rollback_is_ignored_when_success_not_expected(self) -> None:
        self.watcher(expect_success=False)(event("ROLLBACK_COMPLETE"))

    def test_filter_limits_which_events_are_checked(self) -> None:
        handler = self.watcher(event_filter=lambda e: e.is_stack_event())
        handler(event("CREATE_FAILED", logical_id="Bucket", resource_type="AWS::S3::Bucket"))
        with self.assertRaises(RollbackException):
            handler(event("ROLLBACK_IN_PROGRESS"))

    def test_failures_from_earlier_operations_are_ignored(self) -> None:
        self.client = make_client(events=[[
            stack_event("UPDATE_ROLLBACK_IN_PROGRESS", reason="User Initiated"),
            stack_event("UPDATE_IN_PROGRESS"),
            stack_event("CREATE_COMPLETE"),
            stack_event("CREATE_FAILED", logical_id="OldQueue", resource_type="AWS::SQS::Queue",
                        reason="stale failure from last month"),
        ]])
        with self.assertRaises(RollbackException) as raised:
            self.watcher()(event("UPDATE_ROLLBACK_IN_PROGRESS", reason="User Initiated"))
        self.assertEqual(raised.exception.resource, STACK_NAME)
        self.assertEqual(raised.exception.reason, "User Initiated")
        self.assertNotIn("OldQueue", str(raised.exception))

    def test_failure_in_current_operation_is_reported(self) -> None:
        self.client = make_client(events=[[
            stack_event("UPDATE_ROLLBACK_IN_PROGRESS"),
            stack_event("UPDATE_FAILED", logical_id="Bucket", resource_type="AWS::S3::Bucket",
                        reason="Bucket policy is invalid"),
            stack_event("UPDATE_IN_PROGRESS"),
            stack_event("CREATE_FAILED", logical_id="OldQueue", resource_type="AWS::SQS::Queue"),
        ]])
        with self.assertRaises(RollbackException) as raised:
            self.watcher()(event("UPDATE_ROLLBACK_IN_PROGRESS"))
        self.assertEqual(raised.exception.resource, "Bucket")
        self.assertEqual(raised.exception.reason, "Bucket policy is invalid")

    def test_failure_lookup_permission_error_is_downgraded(self) -> None:
        self.client = make_client(events=client_error("AccessDenied", operation="DescribeStackEvents", status=403))
        with self.assertRaises(RollbackException) as raised:
            self.watcher()(event("ROLLBACK_COMPLETE", reason="stack rolled back"))
        self.assertEqual(raised.exception.resource, STACK_NAME)
        self.assertEqual(raised.exception.reason, "stack rolled back")


class WarningAndOutputTests(unittest.TestCase):
    def test_display_warning_once_per_code(self) -> None:
        ledger = WarningLedger()
        orchestrator = Orchestrator(StackEventLogger(ledger))
        self.assertTrue(orchestrator.display_warning(ErrorCode.DESCRIBE_PERMISSION, "no describe"))
        self.assertFalse(orchestrator.display_warning(ErrorCode.DESCRIBE_PERMISSION, "no describe"))
        self.assertTrue(orchestrator.display_warning(ErrorCode.SERVICE_EXCEPTION, "http 500"))
        self.assertEqual(list(ledger), [ErrorCode.DESCRIBE_PERMISSION, ErrorCode.SERVICE_EXCEPTION])

    def test_set_output_variable_uses_empty_string_for_missing_value(self) -> None:
        stream = io.StringIO()
        orchestrator = Orchestrator(StackEventLogger(), stream)
        deployment = RunningDeployment(None, VariableDictionary({SpecialVariables.Action.NAME: "Deploy"}))

        orchestrator.set_output_variable(deployment, "Url", None)

        self.assertEqual(deployment.variables.get("AwsOutputs[Url]"), "")
        message = parse_service_message(stream.getvalue().strip())
        self.assertEqual(message.get("name"), "AwsOutputs[Url]")
        self.assertEqual(message.get("value"), "")

    def test_cloud_exception_handling_reraises_unchanged(self) -> None:
        ledger = WarningLedger()
        orchestrator = Orchestrator(StackEventLogger(ledger))
        failure = client_error("InternalFailure", "boom", status=500)

        def operation():
            raise failure

        with self.assertRaises(type(failure)) as raised:
            orchestrator.with_cloud_exception_handling(operation)
        self.assertIs(raised.exception, failure)
        self.assertIn(ErrorCode.SERVICE_EXCEPTION, ledger)

    def test_cloud_exception_handling_passes_other_errors(self) -> None:
        ledger = WarningLedger()
        orchestrator = Orchestrator(StackEventLogger(ledger))
        with self.assertRaises(KeyError):
            orchestrator.with_cloud_exception_handling(lambda: {}["missing"])
        self.assertEqual(len(ledger), 0)
        self.assertEqual(orchestrator.with_cloud_exception_handling(lambda: 7), 7)


if __name__ == "__main__":
    unittest.main()
