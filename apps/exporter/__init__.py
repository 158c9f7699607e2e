"""
Exporter App - Scheduled BigQuery Export

Responsibilities:
- Stream rows from a BigQuery table or query result
- Normalize DATE / TIMESTAMP values to display strings
- Serialize the whole result set to one CSV or XLSX file
- Retry failed extractions and writes, cool down after persistent errors
- Repeat on a cron schedule (CRON) or run once

Output:
- OUTPUT path, optionally suffixed with a TIMESTAMP_FORMAT timestamp
"""
