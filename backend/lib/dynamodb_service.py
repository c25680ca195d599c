"""
=============================================================================
DYNAMODB SERVICE - Meter, reading and contract storage on Amazon DynamoDB
=============================================================================

Our Table Schema (single table):
--------------------------------
Table: MeterTracker
- meter_id (String) - Partition Key - everything belonging to one meter
- item_key (String) - Sort Key - what kind of record this is:
    "METER"                        -> the meter itself
    "READING#<iso timestamp>"      -> one cumulative reading (naive UTC)
    "CONTRACT#<contract id>"       -> one pricing contract

Keeping a meter's readings and contracts in the same partition means a
single Query loads everything the detail view needs.

Example Items:
{"meter_id": "m-1", "item_key": "METER", "name": "House", "type": "power", "unit": "kWh"}
{"meter_id": "m-1", "item_key": "READING#2025-11-01T00:00:00",
 "date": "2025-11-01T00:00:00", "value": 6575.4}
{"meter_id": "m-1", "item_key": "CONTRACT#c-1", "contract_id": "c-1",
 "provider_name": "Stadtwerke", "start_date": "2025-01-01", "end_date": "2025-12-31",
 "base_price": 10.5, "working_price": 0.31}
=============================================================================
"""

# boto3 - AWS SDK for Python
import boto3
from boto3.dynamodb.conditions import Attr, Key

# ClientError - Exception class for AWS API errors
from botocore.exceptions import ClientError

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from loguru import logger

from backend import config
from backend.lib.meter_core.models import Contract, Meter, Reading

METER_KEY = 'METER'
READING_PREFIX = 'READING#'
CONTRACT_PREFIX = 'CONTRACT#'

# DynamoDB batch_write_item handles at most 25 items per request
BATCH_SIZE = 25


def _number(value: float) -> Decimal:
    # DynamoDB rejects floats; go through str() to avoid precision noise
    return Decimal(str(value))


class DynamoDBService:
    """
    Stores meters, readings and contracts in one DynamoDB table.

    Every read method returns model objects from meter_core; AWS errors are
    logged and turned into conservative defaults (False, [], None) so the
    API keeps answering.

    Usage:
        db = DynamoDBService()
        db.create_table_if_not_exists()
        db.put_reading(Reading("m-1", datetime(2025, 11, 1), 6575.4))
    """

    name = 'dynamodb'

    def __init__(self, table_name: str = None, resource=None, client=None):
        """
        Args:
            table_name: Optional custom table name, defaults to DYNAMODB_TABLE_NAME.
            resource / client: Pre-built boto3 objects. Created from the
                environment configuration when not given.
        """
        self.table_name = table_name or config.DYNAMODB_TABLE_NAME
        self.region = config.AWS_REGION

        # Resource: high-level Table objects; Client: describe_table and friends
        self.dynamodb = resource or boto3.resource('dynamodb', **config.aws_credentials())
        self.client = client or boto3.client('dynamodb', **config.aws_credentials())

        # Table object - set lazily when first needed
        self.table = None

    def _table(self):
        if not self.table:
            self.table = self.dynamodb.Table(self.table_name)
        return self.table

    def create_table_if_not_exists(self) -> bool:
        """
        Create the table (PAY_PER_REQUEST billing) unless it already exists.

        Returns:
            bool: True if the table exists or was created successfully
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            self.table = self.dynamodb.Table(self.table_name)
            logger.info("DynamoDB table '{}' exists", self.table_name)
            return True
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                logger.error("Error checking table {}: {}", self.table_name, e)
                return False

        try:
            table = self.dynamodb.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {'AttributeName': 'meter_id', 'KeyType': 'HASH'},   # Partition key
                    {'AttributeName': 'item_key', 'KeyType': 'RANGE'},  # Sort key
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'meter_id', 'AttributeType': 'S'},
                    {'AttributeName': 'item_key', 'AttributeType': 'S'},
                ],
                BillingMode='PAY_PER_REQUEST',
            )
            # This can take a few seconds
            table.wait_until_exists()
            self.table = table
            logger.info("Created DynamoDB table '{}'", self.table_name)
            return True
        except ClientError as e:
            logger.error("Failed to create table {}: {}", self.table_name, e)
            return False

    # -------------------------------------------------------------------------
    # Item conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _meter_item(meter: Meter) -> Dict:
        return {
            'meter_id': meter.id,
            'item_key': METER_KEY,
            'name': meter.name,
            'type': meter.type.value,
            'unit': meter.unit,
        }

    @staticmethod
    def _reading_item(reading: Reading) -> Dict:
        iso = reading.date.isoformat()
        return {
            'meter_id': reading.meter_id,
            'item_key': READING_PREFIX + iso,
            'date': iso,
            'value': _number(reading.value),
        }

    @staticmethod
    def _contract_item(contract: Contract) -> Dict:
        item = {
            'meter_id': contract.meter_id,
            'item_key': CONTRACT_PREFIX + contract.id,
            'contract_id': contract.id,
            'provider_name': contract.provider_name,
            'start_date': contract.start_date.isoformat(),
            'base_price': _number(contract.base_price),
            'working_price': _number(contract.working_price),
        }
        # Open-ended contracts simply have no end_date attribute
        if contract.end_date is not None:
            item['end_date'] = contract.end_date.isoformat()
        return item

    @staticmethod
    def _to_meter(item: Dict) -> Meter:
        return Meter.from_dict({
            'id': item['meter_id'],
            'name': item.get('name'),
            'type': item.get('type'),
            'unit': item.get('unit'),
        })

    @staticmethod
    def _to_reading(item: Dict) -> Reading:
        return Reading.from_dict({'meter_id': item['meter_id'], 'date': item['date'], 'value': item['value']})

    @staticmethod
    def _to_contract(item: Dict) -> Contract:
        return Contract.from_dict({
            'id': item['contract_id'],
            'meter_id': item['meter_id'],
            'provider_name': item.get('provider_name'),
            'start_date': item['start_date'],
            'end_date': item.get('end_date'),
            'base_price': item['base_price'],
            'working_price': item['working_price'],
        })

    # -------------------------------------------------------------------------
    # Low level helpers
    # -------------------------------------------------------------------------

    def _collect(self, operation: str, **kwargs) -> List[Dict]:
        """
        Runs a Query or Scan and follows LastEvaluatedKey until every page
        (max 1MB each) has been read.
        """
        call = getattr(self._table(), operation)
        response = call(**kwargs)
        items = list(response.get('Items', []))
        while 'LastEvaluatedKey' in response:
            response = call(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
            items.extend(response.get('Items', []))
        return items

    def _items_with_prefix(self, prefix: str, meter_id: Optional[str]) -> List[Dict]:
        if meter_id:
            return self._collect(
                'query',
                KeyConditionExpression=Key('meter_id').eq(meter_id) & Key('item_key').begins_with(prefix),
            )
        # Scan reads the whole table; fine for a household sized data set
        return self._collect('scan', FilterExpression=Attr('item_key').begins_with(prefix))

    def _put(self, item: Dict) -> bool:
        try:
            self._table().put_item(Item=item)
            return True
        except ClientError as e:
            logger.error("Failed to put {}#{}: {}", item['meter_id'], item['item_key'], e)
            return False

    def _delete(self, meter_id: str, item_key: str) -> bool:
        """
        Returns:
            bool: True only if an item with that key existed and was removed
        """
        try:
            # delete_item succeeds silently on missing keys; ALL_OLD tells us whether anything was there
            response = self._table().delete_item(
                Key={'meter_id': meter_id, 'item_key': item_key},
                ReturnValues='ALL_OLD',
            )
        except ClientError as e:
            logger.error("Failed to delete {}#{}: {}", meter_id, item_key, e)
            return False
        return 'Attributes' in response

    # -------------------------------------------------------------------------
    # Meters
    # -------------------------------------------------------------------------

    def put_meter(self, meter: Meter) -> bool:
        return self._put(self._meter_item(meter))

    def get_meters(self) -> List[Meter]:
        try:
            items = self._collect('scan', FilterExpression=Attr('item_key').eq(METER_KEY))
        except ClientError as e:
            logger.error("Failed to list meters: {}", e)
            return []
        return sorted((self._to_meter(i) for i in items), key=lambda m: m.id)

    def get_meter(self, meter_id: str) -> Optional[Meter]:
        try:
            response = self._table().get_item(Key={'meter_id': meter_id, 'item_key': METER_KEY})
        except ClientError as e:
            logger.error("Failed to get meter {}: {}", meter_id, e)
            return None
        item = response.get('Item')
        return self._to_meter(item) if item else None

    def delete_meter(self, meter_id: str) -> bool:
        """Deletes the meter together with all its readings and contracts."""
        try:
            items = self._collect('query', KeyConditionExpression=Key('meter_id').eq(meter_id))
            if not any(item['item_key'] == METER_KEY for item in items):
                return False
            with self._table().batch_writer() as writer:
                for item in items:
                    writer.delete_item(Key={'meter_id': item['meter_id'], 'item_key': item['item_key']})
        except ClientError as e:
            logger.error("Failed to delete meter {}: {}", meter_id, e)
            return False
        logger.info("Deleted meter {} ({} items)", meter_id, len(items))
        return True

    # -------------------------------------------------------------------------
    # Readings
    # -------------------------------------------------------------------------

    def put_reading(self, reading: Reading) -> bool:
        return self._put(self._reading_item(reading))

    def put_readings_batch(self, readings: Iterable[Reading]) -> int:
        """
        Store many readings with batch writes (up to 25 items per request).

        Returns:
            int: Number of successfully written items
        """
        readings = list(readings)
        success_count = 0
        for i in range(0, len(readings), BATCH_SIZE):
            batch = readings[i:i + BATCH_SIZE]
            try:
                with self._table().batch_writer() as writer:
                    for reading in batch:
                        writer.put_item(Item=self._reading_item(reading))
                success_count += len(batch)
            except ClientError as e:
                logger.error("Batch write error: {}", e)
        return success_count

    def get_readings(self, meter_id: Optional[str] = None) -> List[Reading]:
        try:
            items = self._items_with_prefix(READING_PREFIX, meter_id)
        except ClientError as e:
            logger.error("Failed to get readings: {}", e)
            return []
        return [self._to_reading(i) for i in items]

    def delete_reading(self, meter_id: str, date) -> bool:
        return self._delete(meter_id, READING_PREFIX + date.isoformat())

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def put_contract(self, contract: Contract) -> bool:
        return self._put(self._contract_item(contract))

    def get_contracts(self, meter_id: Optional[str] = None) -> List[Contract]:
        try:
            items = self._items_with_prefix(CONTRACT_PREFIX, meter_id)
        except ClientError as e:
            logger.error("Failed to get contracts: {}", e)
            return []
        return [self._to_contract(i) for i in items]

    def get_contract(self, contract_id: str) -> Optional[Contract]:
        try:
            items = self._collect('scan', FilterExpression=Attr('contract_id').eq(contract_id))
        except ClientError as e:
            logger.error("Failed to get contract {}: {}", contract_id, e)
            return None
        return self._to_contract(items[0]) if items else None

    def delete_contract(self, contract_id: str) -> bool:
        contract = self.get_contract(contract_id)
        if contract is None:
            return False
        return self._delete(contract.meter_id, CONTRACT_PREFIX + contract_id)
