"""Normalization of nested input into per-entity record batches."""

from typing import TYPE_CHECKING, Any, Mapping

import structlog

from memquery.models.base import Model

if TYPE_CHECKING:
    from memquery.services.query import Query

NormalizedData = dict[str, dict[str, dict[str, Any]]]


class Processor:
    """Splits arbitrary nested input into flat records keyed by table key.

    Nested payloads under a declared relation name are moved into the
    related entity's batch, with the linking foreign key filled in. Records
    missing a single-field primary key get a database-scoped ``$uid<n>`` id.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def normalize(self, query: "Query", data: Any) -> NormalizedData:
        if isinstance(data, Model):
            data = data.to_record()
        records = [data] if isinstance(data, Mapping) else list(data)
        results: NormalizedData = {}
        for record in records:
            self.normalize_record(query, query.model, dict(record), results, entity=query.entity)
        self._logger.debug(
            "data_normalized",
            entity=query.entity,
            entities=sorted(results),
            record_count=sum(len(batch) for batch in results.values()),
        )
        return results

    def normalize_record(
        self,
        query: "Query",
        model: type[Model],
        record: dict[str, Any],
        results: NormalizedData,
        entity: str | None = None,
    ) -> dict[str, Any]:
        """Normalize one record into ``results`` and return the flat record.

        Args:
            query: The query the normalization was started from.
            model: Model the record belongs to.
            record: A mutable copy of the input record.
            results: Accumulated batches, updated in place.
            entity: Entity to file the record under. Defaults to the model's.

        Returns:
            The flat record as stored in ``results``.
        """
        target = entity or model.entity
        record_model = model.get_model_from_record(record) or model

        if not record_model.has_composite_key() and record.get(str(record_model.primary_key)) is None:
            record[str(record_model.primary_key)] = query.database.next_uid()

        for name, relation in record_model.relations().items():
            if name not in record:
                continue
            nested = record.pop(name)
            if nested is None:
                continue
            relation.normalize_nested(self, query, record_model, record, nested, results)

        key = record_model.get_index_id_from_record(record)
        batch = results.setdefault(target, {})
        if key in batch:
            batch[key] = {**batch[key], **record}
        else:
            batch[key] = record
        return batch[key]


__all__ = ["NormalizedData", "Processor"]
