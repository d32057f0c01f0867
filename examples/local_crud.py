from __future__ import annotations

import os
import uuid

import boto3

from dynaitem_py import Session, SortKeyCondition, TableConfig


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    client = _client()
    table_name = f"dynaitem_py_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        session = Session(TableConfig(table_name=table_name), client=client)

        session.put("A", "001", lambda m: m.set("value", 1))
        session.put("A", "010", lambda m: m.set("value", 10))
        session.put("A", "100", lambda m: m.set("value", 100))
        session.update("A", "010", lambda m: m.increment("value", 5))

        print("get:", session.get("A", "010").attributes)

        page = session.query("A").sort_key(SortKeyCondition.begins_with("0")).execute()
        print("query begins_with('0'):", [item.sk for item in page])
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
