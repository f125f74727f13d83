#!/usr/bin/env python
"""
Initialize DynamoDB tables for Peer Connect.
Run this after LocalStack starts (or once per AWS account) to ensure the
profile, connection and notification tables and their indexes exist.

Usage:
    python scripts/init_dynamodb.py
"""
import os
import sys
import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv

load_dotenv(override=True)

DYNAMODB_ENDPOINT = os.getenv('DYNAMODB_ENDPOINT_URL') or os.getenv('AWS_ENDPOINT_URL')
REGION = os.getenv('AWS_DEFAULT_REGION') or os.getenv('AWS_REGION', 'us-east-1')


def _gsi(index_name: str, attribute: str) -> dict:
    return {
        'IndexName': index_name,
        'KeySchema': [{'AttributeName': attribute, 'KeyType': 'HASH'}],
        'Projection': {'ProjectionType': 'ALL'},
    }


# Table definitions; names and indexes mirror app/adapters/dynamodb.py
TABLES = [
    {
        'name': os.getenv('DYNAMO_USERS_TABLE_NAME', 'peer_profiles'),
        'key': [{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
        'attrs': [{'AttributeName': 'user_id', 'AttributeType': 'S'}],
        'indexes': [],
    },
    {
        'name': os.getenv('DYNAMO_CONNECTIONS_TABLE_NAME', 'peer_connections'),
        'key': [{'AttributeName': 'connection_id', 'KeyType': 'HASH'}],
        'attrs': [
            {'AttributeName': 'connection_id', 'AttributeType': 'S'},
            {'AttributeName': 'user_a_id', 'AttributeType': 'S'},
            {'AttributeName': 'user_b_id', 'AttributeType': 'S'},
        ],
        'indexes': [_gsi('user_a_index', 'user_a_id'), _gsi('user_b_index', 'user_b_id')],
    },
    {
        'name': os.getenv('DYNAMO_NOTIFICATIONS_TABLE_NAME', 'peer_notifications'),
        'key': [{'AttributeName': 'notification_id', 'KeyType': 'HASH'}],
        'attrs': [
            {'AttributeName': 'notification_id', 'AttributeType': 'S'},
            {'AttributeName': 'recipient_id', 'AttributeType': 'S'},
        ],
        'indexes': [_gsi('recipient_index', 'recipient_id')],
    },
]


def get_client():
    return boto3.client('dynamodb', endpoint_url=DYNAMODB_ENDPOINT, region_name=REGION)


def create_table_if_not_exists(client, table_config: dict) -> bool:
    """Create a DynamoDB table if it doesn't exist."""
    table_name = table_config['name']

    try:
        existing = client.list_tables()['TableNames']
        if table_name in existing:
            print(f"  [OK] {table_name} already exists")
            return True
    except ClientError as e:
        print(f"  [!] Error checking tables: {e}")

    params = {
        'TableName': table_name,
        'KeySchema': table_config['key'],
        'AttributeDefinitions': table_config['attrs'],
        'BillingMode': 'PAY_PER_REQUEST',
    }
    if table_config['indexes']:
        params['GlobalSecondaryIndexes'] = table_config['indexes']

    try:
        client.create_table(**params)
        client.get_waiter('table_exists').wait(TableName=table_name)
        print(f"  [OK] Created {table_name}")
        return True
    except ClientError as e:
        if e.response['Error']['Code'] == 'ResourceInUseException':
            print(f"  [OK] {table_name} already exists")
            return True
        print(f"  [FAIL] Error creating {table_name}: {e}")
        return False


def main() -> bool:
    print("=" * 60)
    print("DYNAMODB TABLE INITIALIZATION")
    print("=" * 60)
    print(f"Endpoint: {DYNAMODB_ENDPOINT or 'AWS default'} ({REGION})")

    client = get_client()
    print("\nCreating tables...")
    success = sum(1 for table in TABLES if create_table_if_not_exists(client, table))
    print(f"\nResult: {success}/{len(TABLES)} tables ready")
    return success == len(TABLES)


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
