"""Logs analytics stack - CloudWatch Logs -> Firehose -> S3 -> Athena.

Backend (and job) JSON logs are filtered by subscription filters into two
Firehose delivery streams:

    log-errors/      5xx responses (backend and job worker)
    log-operations/  successful "operation" audit entries

Each stream runs the logs_transform Lambda to unwrap the CloudWatch Logs
envelope into one JSON object per line, then lands GZIP files under
year=/month=/day= prefixes. The Glue tables use partition projection so no
crawler or MSCK REPAIR is needed.
"""
import aws_cdk as cdk
from constructs import Construct
from aws_cdk import (
    aws_athena as athena,
    aws_glue as glue,
    aws_iam as iam,
    aws_kinesisfirehose as firehose,
    aws_logs as logs,
    aws_s3 as s3,
)

from stacks.base_stack import BaseStack
from stacks.naming import glue_db_name

DATE_PARTITION = "year=!{timestamp:YYYY}/month=!{timestamp:MM}/day=!{timestamp:dd}/"

ERROR_COLUMNS = [
    ("timestamp", "string"),
    ("level", "string"),
    ("type", "string"),
    ("request_id", "string"),
    ("session_id", "string"),
    ("user_id", "string"),
    ("role", "string"),
    ("ip_address", "string"),
    ("method", "string"),
    ("url", "string"),
    ("query_params", "string"),
    ("request_body", "string"),
    ("user_agent", "string"),
    ("referer", "string"),
    ("http_status", "int"),
    ("response_time", "double"),
    ("message", "string"),
    ("context", "struct<function_name:string,line_number:int,file_name:string,class_name:string,method_name:string>"),
    ("error_details", "struct<error_type:string,error_code:string,stack_trace:string,"
                      "original_exception:string,inner_exceptions:array<string>>"),
    ("log_group", "string"),
    ("log_stream", "string"),
    ("ingestion_time_iso", "string"),
]

OPERATION_COLUMNS = [
    ("timestamp", "string"),
    ("level", "string"),
    ("type", "string"),
    ("request_id", "string"),
    ("user_id", "string"),
    ("role", "string"),
    ("ip_address", "string"),
    ("method", "string"),
    ("url", "string"),
    ("http_status", "int"),
    ("response_time", "double"),
    ("action", "string"),
    ("resource", "string"),
    ("log_group", "string"),
    ("log_stream", "string"),
    ("ingestion_time_iso", "string"),
]

# name suffix, description, query
NAMED_QUERIES = [
    ("errors-yesterday", "5xx errors from yesterday (schedule timezone), newest first", """\
WITH d AS (
  SELECT
    date_format(at_timezone(current_timestamp, '{timezone}') - INTERVAL '1' day, '%Y') AS y,
    date_format(at_timezone(current_timestamp, '{timezone}') - INTERVAL '1' day, '%m') AS m,
    date_format(at_timezone(current_timestamp, '{timezone}') - INTERVAL '1' day, '%d') AS d
)
SELECT timestamp, user_id, method, url, http_status, message
FROM backend_error_5xx
WHERE year = (SELECT y FROM d)
  AND month = (SELECT m FROM d)
  AND day = (SELECT d FROM d)
ORDER BY timestamp DESC;"""),
    ("errors-top-endpoints", "Endpoints with the most 5xx errors on one day (edit the date)", """\
SELECT url, count(*) AS cnt
FROM backend_error_5xx
WHERE year = '2025' AND month = '10' AND day = '01'
GROUP BY url
ORDER BY cnt DESC
LIMIT 50;"""),
    ("ops-slow-3s", "Operations slower than 3 seconds on one day (edit the date)", """\
SELECT timestamp, user_id, method, url, http_status, response_time
FROM backend_operation
WHERE year = '2025' AND month = '10' AND day = '01'
  AND response_time >= 3.0
ORDER BY response_time DESC
LIMIT 200;"""),
    ("ops-status-dist", "HTTP status distribution of operations on one day (edit the date)", """\
SELECT http_status, count(*) AS cnt
FROM backend_operation
WHERE year = '2025' AND month = '10' AND day = '01'
GROUP BY http_status
ORDER BY http_status;"""),
]


class LogsAnalyticsStack(BaseStack):

    def __init__(self, scope: Construct, construct_id: str, bucket: s3.IBucket,
                 backend_log_group_name: str, job_log_group_name: str = None, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)
        filters = self.settings.log_filters

        transform = self.python_function(
            "LogsTransformFunction",
            asset="logs_transform",
            handler="index.lambda_handler",
            memory_size=128,
            timeout=cdk.Duration.seconds(30),
            description="Unwrap CloudWatch Logs events into NDJSON for Firehose",
        )

        firehose_role = iam.Role(self, "FirehoseRole", assumed_by=iam.ServicePrincipal("firehose.amazonaws.com"))
        firehose_role.add_to_policy(
            iam.PolicyStatement(
                actions=[
                    "s3:AbortMultipartUpload",
                    "s3:GetBucketLocation",
                    "s3:GetObject",
                    "s3:ListBucket",
                    "s3:ListBucketMultipartUploads",
                    "s3:PutObject",
                ],
                resources=[bucket.bucket_arn, f"{bucket.bucket_arn}/*"],
            )
        )
        firehose_role.add_to_policy(
            iam.PolicyStatement(
                actions=["lambda:InvokeFunction", "lambda:GetFunctionConfiguration"],
                resources=[transform.function_arn],
            )
        )

        self.error_stream = self._delivery_stream(
            "ErrorDeliveryStream", f"{self.prefix}-backend-5xx-to-s3", "log-errors/",
            bucket, firehose_role, transform)
        self.operation_stream = self._delivery_stream(
            "OperationDeliveryStream", f"{self.prefix}-backend-operation-to-s3", "log-operations/",
            bucket, firehose_role, transform)

        # CloudWatch Logs assumes the role through its regional principal
        logs_role = iam.Role(
            self,
            "LogsToFirehoseRole",
            assumed_by=iam.ServicePrincipal(f"logs.{self.region}.amazonaws.com"),
        )
        logs_role.add_to_policy(
            iam.PolicyStatement(
                actions=["firehose:PutRecord", "firehose:PutRecordBatch"],
                resources=[self.error_stream.attr_arn, self.operation_stream.attr_arn],
            )
        )

        subscriptions = [
            ("BackendErrorSubscription", backend_log_group_name, self.error_stream, filters.error_pattern()),
            ("BackendOperationSubscription", backend_log_group_name, self.operation_stream,
             filters.operation_pattern()),
        ]
        if job_log_group_name:
            subscriptions.append(
                ("JobErrorSubscription", job_log_group_name, self.error_stream, filters.error_pattern()))
        for construct_id, log_group_name, stream, pattern in subscriptions:
            subscription = logs.CfnSubscriptionFilter(
                self,
                construct_id,
                destination_arn=stream.attr_arn,
                filter_pattern=pattern,
                log_group_name=log_group_name,
                role_arn=logs_role.role_arn,
            )
            subscription.node.add_dependency(logs_role)

        self.database_name = self.node.try_get_context("logsDbName") or glue_db_name(self.project, self.env_name)
        database = glue.CfnDatabase(
            self,
            "LogsDatabase",
            catalog_id=self.account,
            database_input=glue.CfnDatabase.DatabaseInputProperty(
                name=self.database_name,
                description="Logs database for Athena queries",
            ),
        )
        tables = [
            self._table("ErrorTable", "backend_error_5xx", "log-errors/", ERROR_COLUMNS, bucket),
            self._table("OperationTable", "backend_operation", "log-operations/", OPERATION_COLUMNS, bucket),
        ]
        for table in tables:
            table.add_dependency(database)

        for suffix, description, query in NAMED_QUERIES:
            named_query = athena.CfnNamedQuery(
                self,
                f"{suffix}-query",
                database=self.database_name,
                work_group="primary",
                name=f"{self.prefix}-{suffix}",
                description=description,
                query_string=query.replace("{timezone}", self.settings.schedule_timezone),
            )
            for table in tables:
                named_query.add_dependency(table)

        cdk.CfnOutput(self, "LogsDatabaseName", value=self.database_name)
        cdk.CfnOutput(self, "ErrorDeliveryStreamName", value=self.error_stream.ref)
        cdk.CfnOutput(self, "OperationDeliveryStreamName", value=self.operation_stream.ref)

    def _delivery_stream(self, construct_id: str, name: str, key_prefix: str, bucket: s3.IBucket,
                         role: iam.IRole, transform) -> firehose.CfnDeliveryStream:
        stream = firehose.CfnDeliveryStream(
            self,
            construct_id,
            delivery_stream_name=name,
            delivery_stream_type="DirectPut",
            extended_s3_destination_configuration=firehose.CfnDeliveryStream.ExtendedS3DestinationConfigurationProperty(
                bucket_arn=bucket.bucket_arn,
                role_arn=role.role_arn,
                buffering_hints=firehose.CfnDeliveryStream.BufferingHintsProperty(
                    interval_in_seconds=60, size_in_m_bs=5),
                compression_format="GZIP",
                prefix=f"{key_prefix}{DATE_PARTITION}",
                error_output_prefix=f"{key_prefix}error/!{{firehose:error-output-type}}/{DATE_PARTITION}",
                processing_configuration=firehose.CfnDeliveryStream.ProcessingConfigurationProperty(
                    enabled=True,
                    processors=[
                        firehose.CfnDeliveryStream.ProcessorProperty(
                            type="Lambda",
                            parameters=[
                                firehose.CfnDeliveryStream.ProcessorParameterProperty(
                                    parameter_name="LambdaArn", parameter_value=transform.function_arn),
                                firehose.CfnDeliveryStream.ProcessorParameterProperty(
                                    parameter_name="NumberOfRetries", parameter_value="3"),
                            ],
                        )
                    ],
                ),
            ),
        )
        # The role policy must exist before Firehose validates the destination
        stream.node.add_dependency(role)
        return stream

    def _table(self, construct_id: str, name: str, key_prefix: str, columns, bucket: s3.IBucket) -> glue.CfnTable:
        location = f"s3://{bucket.bucket_name}/{key_prefix}"
        parameters = {
            "projection.enabled": "true",
            "projection.year.type": "integer",
            "projection.year.range": "2024,2032",
            "projection.month.type": "integer",
            "projection.month.range": "1,12",
            "projection.month.digits": "2",
            "projection.day.type": "integer",
            "projection.day.range": "1,31",
            "projection.day.digits": "2",
            "storage.location.template": location + "year=${year}/month=${month}/day=${day}/",
            "classification": "json",
            "compressionType": "gzip",
        }
        return glue.CfnTable(
            self,
            construct_id,
            catalog_id=self.account,
            database_name=self.database_name,
            table_input=glue.CfnTable.TableInputProperty(
                name=name,
                table_type="EXTERNAL_TABLE",
                parameters=parameters,
                storage_descriptor=glue.CfnTable.StorageDescriptorProperty(
                    location=location,
                    input_format="org.apache.hadoop.mapred.TextInputFormat",
                    output_format="org.apache.hadoop.hive.ql.io.HiveIgnoreKeyTextOutputFormat",
                    compressed=True,
                    serde_info=glue.CfnTable.SerdeInfoProperty(
                        serialization_library="org.openx.data.jsonserde.JsonSerDe",
                        parameters={"ignore.malformed.json": "true"},
                    ),
                    columns=[glue.CfnTable.ColumnProperty(name=column, type=kind) for column, kind in columns],
                ),
                partition_keys=[
                    glue.CfnTable.ColumnProperty(name=key, type="string") for key in ("year", "month", "day")
                ],
            ),
        )
