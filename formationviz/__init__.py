"""Formation short string decoder for Swiss train formations."""

from formationviz.formationDecoder import (
    FormationParser,
    TokenKind,
    TrainSection,
    TrainWagon,
    TravelDirection,
    WagonAttribute,
    WagonStatus,
    decode_formation,
    resolve_travel_direction,
)

__version__ = "1.0.0"

decode = decode_formation
resolve_direction = resolve_travel_direction

__all__ = [
    "FormationParser",
    "TokenKind",
    "TrainSection",
    "TrainWagon",
    "TravelDirection",
    "WagonAttribute",
    "WagonStatus",
    "decode",
    "decode_formation",
    "resolve_direction",
    "resolve_travel_direction",
]
