from __future__ import annotations

from dynaitem_py import Session, TableConfig, parse_stream_event

SESSION = Session(TableConfig.from_env())


def handler(event, context):  # noqa: ANN001, ARG001
    for record in parse_stream_event(event):
        item = record.new_item(SESSION)
        if item is None:
            continue
        print("changed:", item.pk, item.sk, record.changed_attributes())
