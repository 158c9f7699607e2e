"""
BigQuery Source Client

Opens row streams over a BigQuery table or the result of a SQL query.

The client library is blocking: a BigQueryRowStream resolves its schema and
iterates pages synchronously, and is meant to be driven from a producer
thread (see apps.exporter.stream.SourceStream).

Usage:
    source = BigQuerySource(project="my-project", key_file="key.json")
    remote = source.open(spec)
    schema = remote.resolve_schema()
    for row in remote:
        ...
    remote.destroy()
"""

import logging
import threading
from typing import Iterator, Optional

from google.cloud import bigquery

from utils.schemas import FieldDescriptor, Row, SourceSpec, TableSchema

logger = logging.getLogger(__name__)


def to_table_schema(fields: list[bigquery.SchemaField]) -> TableSchema:
    """Convert BigQuery schema fields to a TableSchema."""
    return TableSchema(
        fields=tuple(
            FieldDescriptor(name=field.name, field_type=field.field_type, mode=field.mode or "NULLABLE")
            for field in fields
        )
    )


class BigQueryRowStream:
    """A single, non restartable read of a table or query result."""

    def __init__(self, client: bigquery.Client, spec: SourceSpec) -> None:
        self.client = client
        self.spec = spec
        self.schema: Optional[TableSchema] = None
        self._rows: Optional[Iterator[bigquery.Row]] = None
        self._job: Optional[bigquery.QueryJob] = None
        self._destroyed = threading.Event()

    def resolve_schema(self) -> Optional[TableSchema]:
        """Start the read and resolve the result schema.

        For a table, the schema comes from the table metadata. For a query,
        it comes from the job's destination table; when the job reports no
        destination the schema stays unresolved (None).

        Raises:
            google.api_core.exceptions.GoogleAPIError: On transport/auth/query failure
        """
        if self.spec.table:
            table_id = f"{self.spec.project}.{self.spec.dataset}.{self.spec.table}"
            table = self.client.get_table(table_id)
            self.schema = to_table_schema(table.schema)
            self._rows = iter(self.client.list_rows(table))
            logger.info("Reading table: table=%s, rows=%s", table_id, table.num_rows)
            return self.schema

        job_config = bigquery.QueryJobConfig(
            default_dataset=f"{self.spec.project}.{self.spec.dataset}"
        )
        self._job = self.client.query(self.spec.query, job_config=job_config)
        logger.info("Query job created: job_id=%s", self._job.job_id)

        rows = self._job.result()

        destination = self._job.destination
        if destination is not None and destination.dataset_id and destination.table_id:
            self.schema = to_table_schema(self.client.get_table(destination).schema)
        else:
            logger.info("Query job has no destination table, schema unresolved")

        self._rows = iter(rows)
        return self.schema

    def __iter__(self) -> Iterator[Row]:
        if self._rows is None:
            self.resolve_schema()
        for row in self._rows:
            if self._destroyed.is_set():
                return
            yield dict(row.items())

    def destroy(self) -> None:
        """Stop reading and cancel the query job if it is still running."""
        self._destroyed.set()
        job = self._job
        if job is not None and job.state != "DONE":
            try:
                job.cancel()
                logger.info("Query job cancelled: job_id=%s", job.job_id)
            except Exception as e:
                logger.warning("Failed to cancel query job: job_id=%s, error=%s", job.job_id, str(e))


class BigQuerySource:
    """Factory of row streams bound to one BigQuery client."""

    def __init__(
        self,
        project: str,
        key_file: Optional[str] = None,
        client: Optional[bigquery.Client] = None,
    ) -> None:
        if client is None:
            if key_file:
                client = bigquery.Client.from_service_account_json(key_file, project=project)
            else:
                client = bigquery.Client(project=project)
        self.client = client

    def open(self, spec: SourceSpec) -> BigQueryRowStream:
        return BigQueryRowStream(self.client, spec)
