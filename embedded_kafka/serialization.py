"""Named serialization strategies for producer and consumer sessions."""

import json
from enum import Enum


def _encode_string(value):
    if value is None:
        return None
    return value.encode('utf-8')


def _decode_string(data):
    if data is None:
        return None
    return data.decode('utf-8')


def _identity(value):
    return value


def _encode_json(value):
    if value is None:
        return None
    return json.dumps(value).encode('utf-8')


def _decode_json(data):
    if data is None:
        return None
    return json.loads(data.decode('utf-8'))


class Serialization(Enum):
    STRING = "string"
    BYTES = "bytes"
    JSON = "json"

    def serializer(self):
        return _SERIALIZERS[self]

    def deserializer(self):
        return _DESERIALIZERS[self]

    @classmethod
    def parse(cls, name):
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            known = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown serialization '{name}', expected one of: {known}") from None


_SERIALIZERS = {
    Serialization.STRING: _encode_string,
    Serialization.BYTES: _identity,
    Serialization.JSON: _encode_json,
}

_DESERIALIZERS = {
    Serialization.STRING: _decode_string,
    Serialization.BYTES: _identity,
    Serialization.JSON: _decode_json,
}
