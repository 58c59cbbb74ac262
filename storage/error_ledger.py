"""DynamoDB-backed ledger of failed event creations."""
import itertools
import logging
import time
from typing import List

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.models import EventRecord

logger = logging.getLogger(__name__)

_sequence = itertools.count()

LEDGER_HEADER = [
    'Title', 'Start Date', 'End Date', 'Is All Day',
    'Description', 'Location', 'Error Message'
]


class ErrorLedger:
    """Persisted queue of events whose creation failed, replayed on the next run."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, table_name: str, ledger_name: str):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table
            ledger_name: Partition holding this ledger's entries
        """
        self.table_name = table_name
        self.ledger_name = ledger_name
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized ErrorLedger '{ledger_name}' on table: {table_name}")

    def ensure_table(self) -> None:
        """Create the ledger table if it does not exist yet."""
        client = self.dynamodb.meta.client
        try:
            client.describe_table(TableName=self.table_name)
            return
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                raise

        logger.info(f"Creating error ledger table: {self.table_name}")
        client.create_table(
            TableName=self.table_name,
            KeySchema=[
                {'AttributeName': 'ledger_name', 'KeyType': 'HASH'},
                {'AttributeName': 'entry_id', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'ledger_name', 'AttributeType': 'S'},
                {'AttributeName': 'entry_id', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        client.get_waiter('table_exists').wait(TableName=self.table_name)

    def _query_items(self) -> List[dict]:
        try:
            response = self.table.query(
                KeyConditionExpression=Key('ledger_name').eq(self.ledger_name)
            )
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    KeyConditionExpression=Key('ledger_name').eq(self.ledger_name),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            return items

        except ClientError as e:
            logger.error(f"Error querying error ledger: {e}")
            raise

    def read_rows(self) -> List[List[str]]:
        """
        Read all ledger entries in the order they were recorded.

        Returns:
            Rows of (title, start, end, all-day, description, location,
            error message)
        """
        return [self._item_to_row(item) for item in self._query_items()]

    def export_rows(self) -> List[List[str]]:
        """Return the ledger as a table, header row first."""
        return [list(LEDGER_HEADER)] + self.read_rows()

    def append(self, event: EventRecord, error_message: str) -> None:
        """
        Record a failed event.

        Args:
            event: Event whose creation failed
            error_message: Error reported by the calendar store
        """
        item = {
            'ledger_name': self.ledger_name,
            'entry_id': f"{time.time_ns():020d}-{next(_sequence):08d}",
            'title': event.title,
            'start_date': event.start.isoformat(),
            'end_date': event.end.isoformat() if event.end else '',
            'is_all_day': 'TRUE' if event.is_all_day else 'FALSE',
            'description': event.description or '',
            'location': event.location or '',
            'error_message': error_message
        }
        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error(f"Error writing to error ledger: {e}")
            raise

    def clear(self) -> int:
        """
        Delete every entry of this ledger.

        Returns:
            Count of deleted entries
        """
        items = self._query_items()
        if not items:
            return 0

        deleted_count = 0
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]
            with self.table.batch_writer() as writer:
                for item in batch:
                    writer.delete_item(
                        Key={'ledger_name': item['ledger_name'], 'entry_id': item['entry_id']}
                    )
                    deleted_count += 1

        logger.info(f"Cleared {deleted_count} entries from error ledger")
        return deleted_count

    def _item_to_row(self, item: dict) -> List[str]:
        return [
            item.get('title', ''),
            item.get('start_date', ''),
            item.get('end_date', ''),
            item.get('is_all_day', 'FALSE'),
            item.get('description', ''),
            item.get('location', ''),
            item.get('error_message', '')
        ]
