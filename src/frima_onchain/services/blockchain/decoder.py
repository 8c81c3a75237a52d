"""Schema-checked decoder for FrimaMarketplace event logs.

Log structure:
- topics[0]: Event signature (keccak256 of the canonical event declaration)
- topics[1..n]: Indexed parameters, in ABI declaration order
- data: ABI-encoded tuple of the non-indexed parameters

Schemas are derived once from the bundled ABI. A log either decodes into a
fully populated ContractEvent, is skipped as noise (``None``), or raises
EventDecodeError naming every field that could not be decoded.
"""

from dataclasses import dataclass

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address
from eth_utils.abi import event_signature_to_log_topic

from frima_onchain.abi import get_event_abis
from frima_onchain.models.chain import RawLog
from frima_onchain.models.events import ContractEvent, EventKind
from frima_onchain.services.exceptions import EventDecodeError

logger = structlog.get_logger()

# ABI parameter name -> ContractEvent attribute (identity when absent)
_ATTRIBUTE_NAMES = {
    "itemId": "item_id",
    "tokenId": "token_id",
    "imageUrl": "image_url",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_DECODE_ERRORS = (DecodingError, ValueError, OverflowError, TypeError)


def _attribute(param_name: str) -> str:
    return _ATTRIBUTE_NAMES.get(param_name, param_name)


@dataclass(frozen=True)
class EventSchema:
    """Indexed and data parameter layout of one event."""

    kind: EventKind
    signature: str
    topic: bytes
    indexed: tuple[tuple[str, str], ...]
    data: tuple[tuple[str, str], ...]

    @classmethod
    def from_abi(cls, event_abi: dict) -> "EventSchema":
        inputs = event_abi["inputs"]
        signature = f"{event_abi['name']}({','.join(i['type'] for i in inputs)})"
        return cls(
            kind=EventKind(event_abi["name"]),
            signature=signature,
            topic=event_signature_to_log_topic(signature),
            indexed=tuple((i["name"], i["type"]) for i in inputs if i["indexed"]),
            data=tuple((i["name"], i["type"]) for i in inputs if not i["indexed"]),
        )


def build_event_schemas(event_abis: dict[str, dict] | None = None) -> dict[bytes, EventSchema]:
    """Build the topic0 -> schema table for every marketplace event.

    Raises:
        ValueError: If the ABI is missing one of the marketplace events
    """
    event_abis = event_abis if event_abis is not None else get_event_abis()

    schemas: dict[bytes, EventSchema] = {}
    for kind in EventKind:
        if kind.value not in event_abis:
            raise ValueError(f"Event '{kind.value}' not found in ABI")
        schema = EventSchema.from_abi(event_abis[kind.value])
        schemas[schema.topic] = schema

    return schemas


def _normalize(abi_type: str, value):
    if abi_type == "address":
        return to_checksum_address(value)
    return value


class EventDecoder:
    """Maps raw logs of one contract to typed ContractEvents."""

    def __init__(self, contract_address: str, schemas: dict[bytes, EventSchema] | None = None):
        """
        Initialize decoder.

        Args:
            contract_address: Marketplace contract address; logs from other
                addresses are never decoded
            schemas: topic0 -> EventSchema table (default: built from bundled ABI)
        """
        self.contract_address = to_checksum_address(contract_address)
        self.schemas = schemas if schemas is not None else build_event_schemas()
        self._topics_by_kind = {schema.kind: topic for topic, schema in self.schemas.items()}

    def topic_for(self, kind: EventKind) -> bytes:
        """Event signature topic for ``kind``."""
        return self._topics_by_kind[kind]

    def schema_for(self, kind: EventKind) -> EventSchema:
        return self.schemas[self._topics_by_kind[kind]]

    def decode(self, log: RawLog) -> ContractEvent | None:
        """Decode a raw log.

        Returns:
            ContractEvent, or None when the log is not a marketplace event
            (no topics, foreign address, unknown signature)

        Raises:
            EventDecodeError: Known signature but missing/undecodable fields
        """
        if not log.topics:
            logger.warning(
                "decoder.no_topics",
                tx_hash=log.tx_hash,
                address=log.address,
            )
            return None

        if log.address.lower() != self.contract_address.lower():
            logger.warning(
                "decoder.address_mismatch",
                expected=self.contract_address,
                actual=log.address,
                tx_hash=log.tx_hash,
            )
            return None

        schema = self.schemas.get(bytes(log.topics[0]))
        if schema is None:
            logger.warning(
                "decoder.unknown_signature",
                signature="0x" + bytes(log.topics[0]).hex(),
                tx_hash=log.tx_hash,
                block_number=log.block_number,
            )
            return None

        fields = self._decode_indexed(schema, log)
        fields.update(self._decode_data(schema, log))

        if "item_id" not in fields:
            raise EventDecodeError(schema.kind.value, "schema has no itemId", ["itemId"])

        return ContractEvent(
            kind=schema.kind,
            tx_hash=log.tx_hash,
            block_number=log.block_number,
            log_index=log.log_index,
            **fields,
        )

    def _decode_indexed(self, schema: EventSchema, log: RawLog) -> dict:
        topics = log.topics[1:]
        if len(topics) < len(schema.indexed):
            missing = [name for name, _ in schema.indexed[len(topics) :]]
            raise EventDecodeError(
                schema.kind.value,
                f"expected {len(schema.indexed)} indexed topics, got {len(topics)}",
                missing,
            )

        fields = {}
        bad = []
        for (name, abi_type), topic in zip(schema.indexed, topics):
            try:
                if len(topic) != 32:
                    raise ValueError(f"topic is {len(topic)} bytes")
                (value,) = abi_decode([abi_type], bytes(topic))
                fields[_attribute(name)] = _normalize(abi_type, value)
            except _DECODE_ERRORS:
                bad.append(name)

        if bad:
            raise EventDecodeError(schema.kind.value, "undecodable indexed topics", bad)
        return fields

    def _decode_data(self, schema: EventSchema, log: RawLog) -> dict:
        if not schema.data:
            return {}

        types = [abi_type for _, abi_type in schema.data]
        try:
            values = abi_decode(types, log.data)
        except _DECODE_ERRORS as e:
            # Fields whose 32-byte head slot lies beyond the payload are missing;
            # otherwise the whole payload is malformed.
            present_slots = len(log.data) // 32
            missing = [name for name, _ in schema.data[present_slots:]]
            raise EventDecodeError(
                schema.kind.value,
                f"data payload decode failed: {e}",
                missing or [name for name, _ in schema.data],
            ) from e

        return {
            _attribute(name): _normalize(abi_type, value)
            for (name, abi_type), value in zip(schema.data, values)
        }
