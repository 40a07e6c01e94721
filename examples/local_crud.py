from __future__ import annotations

import os
import uuid

import boto3

from dynarecord import Record, attribute


class Note(Record, table_name=f"dynarecord_example_{uuid.uuid4().hex[:12]}", hash_key="pk", range_key="sk"):
    value = attribute("integer")
    tags = attribute("set", of="string")


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNARECORD_ENDPOINT_URL", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    client = _client()
    client.create_table(
        TableName=Note.table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=Note.table_name)
    Note.use_client(client)

    try:
        Note.create(pk="A", sk="001", value=1, tags=["draft"])
        for i in (10, 100):
            Note.enqueue_for_save(pk="A", sk=f"{i:03d}", value=i)
        Note.flush_queue()

        note = Note.find("A", "010")
        note.value += 1
        print("changes:", note.changes)
        note.save()

        print("batch_find:", Note.batch_find([("A", "001"), ("A", "010"), ("A", "100")]))
    finally:
        client.delete_table(TableName=Note.table_name)


if __name__ == "__main__":
    main()
