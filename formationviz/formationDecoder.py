#!/usr/bin/env python3
import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple, Any

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)

# PERFORMANCE OPTIMIZATION: Pre-compile frequently used regex patterns
_REGEX_CACHE = {}


def get_compiled_regex(pattern: str, flags=0) -> re.Pattern:
    """Get cached compiled regex pattern to avoid recompilation."""
    key = (pattern, flags)
    if key not in _REGEX_CACHE:
        _REGEX_CACHE[key] = re.compile(pattern, flags)
    return _REGEX_CACHE[key]


# Codes whose presence makes a token look like a vehicle
WAGON_TYPE_CODES = ("1", "2", "12", "CC", "FA", "WL", "WR", "W1", "W2", "LK", "D", "K", "X")
STATUS_CHARS = ("-", ">", "=", "%")

WAGON_TYPE_MAPPING = MappingProxyType(
    {
        "LK": "locomotive",
        "1": "first-class",
        "2": "second-class",
        "12": "first-and-second-class",
        "CC": "couchette",
        "FA": "second-class",
        "FZ": "second-class",
        "WL": "sleeper",
        "WR": "restaurant",
        "W1": "restaurant-first",
        "W2": "restaurant-second",
        "D": "baggage",
        "K": "classless",
        "X": "parked",
    }
)

# sorted() keeps insertion order among codes of equal length
_TYPE_CODES_LONGEST_FIRST = tuple(sorted(WAGON_TYPE_MAPPING, key=len, reverse=True))

TYPE_LABELS = MappingProxyType(
    {
        "locomotive": "Locomotive",
        "first-class": "1st Class Coach",
        "second-class": "2nd Class Coach",
        "first-and-second-class": "1st & 2nd Class Coach",
        "couchette": "Couchette Compartments",
        "sleeper": "Sleeping Compartments",
        "restaurant": "2nd Class Coach",
        "restaurant-first": "1st Class Coach",
        "restaurant-second": "2nd Class Coach",
        "baggage": "Luggage Coach",
        "classless": "Classless Coach",
        "parked": "Parked Vehicle",
        "wagon": "Coach",
    }
)

DEFAULT_WAGON_TYPE = "wagon"
DEFAULT_TYPE_LABEL = "Coach"
LOCOMOTIVE_TYPE = "locomotive"

GROUP_NO_PASSAGE_MESSAGE = "No passage to the neighbouring coach possible"
NO_PASSAGE_NEXT_MESSAGE = "No passage to next coach"
NO_PASSAGE_PREVIOUS_MESSAGE = "No passage to previous coach"

_FAMILY_WAGON_PATTERN = get_compiled_regex(r"F[AZ]")
_RESTAURANT_WAGON_PATTERN = get_compiled_regex(r"W[12R]")
_SECTOR_PATTERN = get_compiled_regex(r"@([A-Z])")
_SECTOR_SPLIT_PATTERN = get_compiled_regex(r"(?=@[A-Z])")
_LEADING_STATUS_PATTERN = get_compiled_regex(r"^[-=>%]+")
_ALL_BRACKETS_PATTERN = get_compiled_regex(r"[()\[\]]")
_OFFER_LIST_PATTERN = get_compiled_regex(r"#([A-Z;]+)")
_GROUP_OFFER_PATTERN = get_compiled_regex(r"[)\]](?:[:#]\d+)?#([A-Z;]+)\Z", re.ASCII)
_GROUP_PARENTHESIS_PATTERN = get_compiled_regex(r"\((.*?)\)")
_LOOSE_TOKEN_SPLIT_PATTERN = get_compiled_regex(r"[,\\]")

# Ordinal number is either ":N" (or ",N") or the second half of "N:M"
_ORDINAL_PATTERNS = (
    get_compiled_regex(r"[,:](\d{1,3})(?:[:#]|\Z|[)])", re.ASCII),
    get_compiled_regex(r"(\d{1,3}):(\d{1,3})", re.ASCII),
)

# CLASS:ORDINAL, checked before the looser class markers
_CLASS_ORDINAL_PATTERN = get_compiled_regex(r"^([12])(?::|\):|,:|@:)(\d+)", re.ASCII)

_CLASS_MARKER_PATTERNS = MappingProxyType(
    {
        "1": (
            get_compiled_regex(r"^1(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"^12(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"[,@]1(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"\(1(?:[:#,@)]|\Z)", re.ASCII),
        ),
        "2": (
            get_compiled_regex(r"^2(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"^12(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"[,@]2(?:[:#,@)]|\Z)", re.ASCII),
            get_compiled_regex(r"\(2(?:[:#,@)]|\Z)", re.ASCII),
        ),
    }
)

_RESTAURANT_CLASSES = (("WR", "2"), ("W1", "1"), ("W2", "2"))

_TYPE_ANCHORED_PATTERNS = tuple(
    (code, get_compiled_regex(rf"^{re.escape(code)}(?:[:#,]|\Z)", re.ASCII))
    for code in _TYPE_CODES_LONGEST_FIRST
)


class TokenKind(Enum):
    """Formation string token kinds."""

    SECTOR = "Sector"
    FICTITIOUS_WAGON = "FictitiousWagon"
    BRACKET_OPEN = "BracketOpen"
    BRACKET_CLOSE = "BracketClose"
    PARENTHESIS_OPEN = "ParenOpen"
    PARENTHESIS_CLOSE = "ParenClose"
    COMMA = "Comma"
    BACKSLASH = "Backslash"
    VEHICLE = "Vehicle"
    UNKNOWN = "Unknown"


class WagonStatus(Enum):
    """Wagon status flags carried by the formation string."""

    CLOSED = "Closed"
    GROUP_BOARDING = "Group boarding"
    RESERVED_FOR_TRANSIT = "Reserved for transit"
    UNSERVICED = "Open but unserviced"


class TravelDirection(Enum):
    """Travel direction of the train relative to the written formation."""

    LEFT = "left"
    RIGHT = "right"
    UNKNOWN = "unknown"


_STATUS_MARKERS = ((">", WagonStatus.GROUP_BOARDING), ("=", WagonStatus.RESERVED_FOR_TRANSIT), ("%", WagonStatus.UNSERVICED))

_STRUCTURAL_TOKENS = MappingProxyType(
    {
        "[": TokenKind.BRACKET_OPEN,
        "]": TokenKind.BRACKET_CLOSE,
        "(": TokenKind.PARENTHESIS_OPEN,
        ")": TokenKind.PARENTHESIS_CLOSE,
        ",": TokenKind.COMMA,
        "\\": TokenKind.BACKSLASH,
    }
)


@dataclass(frozen=True)
class WagonAttribute:
    """Offer or facility shown on a wagon."""

    code: str
    label: str
    icon: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "label": self.label, "icon": self.icon}


OFFER_MAPPING = MappingProxyType(
    {
        "BHP": WagonAttribute("BHP", "Wheelchair Spaces", "wheelchair"),
        "BZ": WagonAttribute("BZ", "Business Zone", "business"),
        "FZ": WagonAttribute("FZ", "Family Zone", "family"),
        "KW": WagonAttribute("KW", "Stroller Platform", "stroller"),
        "LA": WagonAttribute("LA", "Luggage", "luggage"),
        "NF": WagonAttribute("NF", "Low Floor Access", "accessible"),
        "VH": WagonAttribute("VH", "Bike Hooks", "bicycle"),
        "VR": WagonAttribute("VR", "Bike Hooks Reservation Required", "bicycle-reserved"),
        "WL": WagonAttribute("WL", "Sleeping Compartments", "sleep"),
        "CC": WagonAttribute("CC", "Couchette Compartments", "couchette"),
    }
)

RESTAURANT_ATTRIBUTE = WagonAttribute("WR", "Restaurant", "restaurant")


@dataclass
class FormationToken:
    """Single lexical token of a formation string."""

    kind: TokenKind
    value: str
    position: int


@dataclass
class TrainWagon:
    """Decoded wagon, ready for display."""

    position: int
    number: str = ""
    type: str = DEFAULT_WAGON_TYPE
    type_label: str = DEFAULT_TYPE_LABEL
    classes: List[str] = field(default_factory=list)
    attributes: List[WagonAttribute] = field(default_factory=list)
    no_access_to_previous: bool = False
    no_access_to_next: bool = False
    sector: str = ""
    no_access_message: Optional[str] = None
    status_codes: List[WagonStatus] = field(default_factory=list)

    @property
    def is_locomotive(self) -> bool:
        return self.type == LOCOMOTIVE_TYPE

    @property
    def attribute_codes(self) -> List[str]:
        return [attr.code for attr in self.attributes]

    def add_attribute(self, attribute: WagonAttribute) -> bool:
        """Append an attribute unless one with the same code is present."""
        if attribute.code in self.attribute_codes:
            return False
        self.attributes.append(attribute)
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Render the camelCase display contract."""
        return {
            "position": self.position,
            "number": self.number,
            "type": self.type,
            "typeLabel": self.type_label,
            "classes": list(self.classes),
            "attributes": [attr.to_dict() for attr in self.attributes],
            "noAccessToPrevious": self.no_access_to_previous,
            "noAccessToNext": self.no_access_to_next,
            "sector": self.sector,
            "noAccessMessage": self.no_access_message,
            "statusCodes": [status.value for status in self.status_codes],
        }


@dataclass
class TrainSection:
    """Wagons stopping in one platform sector."""

    sector: str
    wagons: List[TrainWagon] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"sector": self.sector, "wagons": [wagon.to_dict() for wagon in self.wagons]}


@dataclass
class DisplayConfig:
    """Rendering options for the command line output."""

    show_attributes: bool = True
    show_status: bool = True
    show_legend: bool = False
    use_color: bool = True
    log_file: str = "formation_decoder.log"

    @classmethod
    def from_file(cls, config_path: Optional[Path]) -> "DisplayConfig":
        """Load options from a JSON file, falling back to defaults."""
        if config_path and config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                config_dict = json.load(f)
            return cls(**config_dict)
        return cls()


def is_potential_wagon_token(token: str) -> bool:
    """Check whether a token could describe a wagon."""
    if token.startswith(STATUS_CHARS):
        return True
    return any(code in token for code in WAGON_TYPE_CODES)


def _classify_buffer(value: str, position: int) -> FormationToken:
    if value.startswith("@") and len(value) > 1:
        return FormationToken(TokenKind.SECTOR, value, position)
    if value == "F":
        return FormationToken(TokenKind.FICTITIOUS_WAGON, value, position)
    if is_potential_wagon_token(value):
        return FormationToken(TokenKind.VEHICLE, value, position)
    return FormationToken(TokenKind.UNKNOWN, value, position)


def tokenize_formation_string(formation_string: str) -> List[FormationToken]:
    """
    Split a formation string into typed tokens.

    Decision table, evaluated per character (first row wins):
      '@' + 'A'-'Z'           -> flush buffer, emit SECTOR of both chars
      one of [ ] ( ) , \\     -> flush buffer, emit structural token
      'F' with empty buffer   -> emit FICTITIOUS_WAGON
      anything else           -> append to buffer
    """
    tokens: List[FormationToken] = []
    buffer = ""
    length = len(formation_string)
    i = 0

    def flush():
        nonlocal buffer
        if buffer:
            tokens.append(_classify_buffer(buffer, len(tokens)))
            buffer = ""

    while i < length:
        char = formation_string[i]
        next_char = formation_string[i + 1] if i + 1 < length else ""

        if char == "@" and "A" <= next_char <= "Z":
            flush()
            tokens.append(FormationToken(TokenKind.SECTOR, char + next_char, len(tokens)))
            i += 2
            continue

        kind = _STRUCTURAL_TOKENS.get(char)
        if kind is not None:
            flush()
            tokens.append(FormationToken(kind, char, len(tokens)))
        elif char == "F" and not buffer:
            tokens.append(FormationToken(TokenKind.FICTITIOUS_WAGON, char, len(tokens)))
        else:
            buffer += char
        i += 1

    flush()

    if logging.getLogger().isEnabledFor(logging.DEBUG):
        logging.debug(
            f"TOKENIZE: '{formation_string}' -> "
            + " ".join(f"{t.kind.name}:{t.value}" for t in tokens)
        )
    return tokens


def find_bracket_span(text: str, open_char: str, close_char: str) -> Optional[Tuple[int, int]]:
    """
    Locate the first balanced top-level group.

    Returns (content_start, content_end) so that text[content_start:content_end]
    is the content strictly between the delimiters, or None when no balanced
    group exists.
    """
    depth = 0
    start = -1
    for i, char in enumerate(text):
        if char == open_char:
            if depth == 0:
                start = i + 1
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0 and start != -1:
                return start, i
    return None


def extract_bracket_content(text: str, open_char: str, close_char: str) -> Optional[str]:
    """Extract the content of the first balanced group, or None."""
    span = find_bracket_span(text, open_char, close_char)
    if span is None:
        return None
    return text[span[0]:span[1]]


def parse_wagon_status(token: str) -> List[WagonStatus]:
    """Closed wins over every other status; the rest may combine."""
    if token.startswith("-") or "(-" in token or "@-" in token:
        return [WagonStatus.CLOSED]
    return [status for marker, status in _STATUS_MARKERS if marker in token]


def determine_wagon_type(token: str) -> str:
    """Map a cleaned token to its wagon type, longest code first."""
    for code, pattern in _TYPE_ANCHORED_PATTERNS:
        if pattern.search(token):
            return WAGON_TYPE_MAPPING[code]

    # Code embedded somewhere in the token
    for code in _TYPE_CODES_LONGEST_FIRST:
        if code in token:
            return WAGON_TYPE_MAPPING[code]

    return DEFAULT_WAGON_TYPE


def get_type_label(wagon_type: str) -> str:
    return TYPE_LABELS.get(wagon_type, DEFAULT_TYPE_LABEL)


def extract_ordinal_number(token: str) -> Optional[str]:
    """Extract the printed wagon number (ordinal) from a bracket-free token."""
    for pattern in _ORDINAL_PATTERNS:
        match = pattern.search(token)
        if match:
            return match.group(match.lastindex)
    return None


def _strip_one_pair(token: str, open_char: str, close_char: str) -> str:
    if token.startswith(open_char):
        token = token[1:]
    if token.endswith(close_char):
        token = token[:-1]
    return token


def determine_wagon_classes(token: str) -> List[str]:
    """
    Determine the service classes ('1', '2') offered in a wagon.

    Expects the status-stripped token with its brackets and parentheses
    still in place. An empty list is a valid answer.
    """
    if _FAMILY_WAGON_PATTERN.search(token):
        return ["2"]

    clean = _LEADING_STATUS_PATTERN.sub("", token)
    clean = _strip_one_pair(clean, "[", "]")
    clean = _strip_one_pair(clean, "(", ")")

    class_ordinal = _CLASS_ORDINAL_PATTERN.search(clean)
    if class_ordinal:
        return [class_ordinal.group(1)]

    for code, service_class in _RESTAURANT_CLASSES:
        if code in clean:
            return [service_class]

    return [
        service_class
        for service_class, patterns in _CLASS_MARKER_PATTERNS.items()
        if any(pattern.search(clean) for pattern in patterns)
    ]


def get_attribute_object(code: str) -> Optional[WagonAttribute]:
    return OFFER_MAPPING.get(code)


def parse_offer_codes(offer_list: str) -> List[WagonAttribute]:
    """Resolve a ';'-separated offer list, skipping unknown codes."""
    attributes = []
    for code in offer_list.split(";"):
        attribute = get_attribute_object(code)
        if attribute and attribute not in attributes:
            attributes.append(attribute)
    return attributes


def parse_wagon_attributes(token: str) -> List[WagonAttribute]:
    """Implicit attributes from the wagon code, then explicit '#' offers."""
    attributes: List[WagonAttribute] = []

    if _FAMILY_WAGON_PATTERN.search(token):
        attributes.append(OFFER_MAPPING["FZ"])
    if "D" in token:
        attributes.append(OFFER_MAPPING["LA"])
    if "WL" in token:
        attributes.append(OFFER_MAPPING["WL"])
    if "CC" in token:
        attributes.append(OFFER_MAPPING["CC"])
    if _RESTAURANT_WAGON_PATTERN.search(token) and "%" not in token:
        attributes.append(RESTAURANT_ATTRIBUTE)

    offer_match = _OFFER_LIST_PATTERN.search(token)
    if not offer_match:
        return attributes

    present = {attr.code for attr in attributes}
    for attribute in parse_offer_codes(offer_match.group(1)):
        if attribute.code not in present:
            attributes.append(attribute)
            present.add(attribute.code)
    return attributes


def parse_vehicle_token(token: str, sector: str, position: int) -> Optional[TrainWagon]:
    """
    Decode a single wagon token such as '-2:5#BHP;VH' or '(1:1)'.

    Returns None only for blank tokens.
    """
    if not token or not token.strip():
        return None

    # --- STEP 1: STATUS ---
    status_codes = parse_wagon_status(token)

    # --- STEP 2: CLEAN TOKEN ---
    clean_token = _LEADING_STATUS_PATTERN.sub("", token)
    # Brackets kept for no-passage and class detection
    clean_with_parentheses = clean_token
    clean_token = _strip_one_pair(clean_token, "[", "]")
    clean_token = _strip_one_pair(clean_token, "(", ")")

    # --- STEP 3: TYPE ---
    wagon_type = determine_wagon_type(clean_token)

    # --- STEP 4: ORDINAL ---
    number = extract_ordinal_number(_ALL_BRACKETS_PATTERN.sub("", clean_token))

    # --- STEP 5: CLASSES ---
    classes = determine_wagon_classes(clean_with_parentheses)

    # --- STEP 6: ATTRIBUTES ---
    attributes = parse_wagon_attributes(clean_token)

    # --- STEP 7: NO-PASSAGE ---
    no_access_to_previous = clean_with_parentheses.startswith("(") or token.startswith("(")
    no_access_to_next = clean_with_parentheses.endswith(")") or token.endswith(")")

    if logging.getLogger().isEnabledFor(logging.DEBUG):
        logging.debug(
            f"VEHICLE: '{token}' -> type={wagon_type} number={number or '-'} "
            f"classes={classes} attributes={[a.code for a in attributes]} "
            f"status={[s.name for s in status_codes]}"
        )

    return TrainWagon(
        position=position,
        number=number or "",
        type=wagon_type,
        type_label=get_type_label(wagon_type),
        classes=classes,
        attributes=attributes,
        no_access_to_previous=no_access_to_previous,
        no_access_to_next=no_access_to_next,
        sector=sector,
        status_codes=status_codes,
    )


def parse_vehicle_group(
    group_content: str, sector: str, start_position: int
) -> Tuple[List[TrainWagon], int]:
    """
    Decode the content of one bracket group (brackets removed).

    Returns the decoded wagons and the next free provisional position.
    Fictitious wagons consume a position without producing a wagon.
    """
    tokens = tokenize_formation_string(group_content)
    wagons: List[TrainWagon] = []
    current_sector = sector
    position = start_position

    for token in tokens:
        if token.kind == TokenKind.SECTOR:
            sector_match = _SECTOR_PATTERN.search(token.value)
            if sector_match:
                current_sector = sector_match.group(1)
            continue

        if token.kind == TokenKind.FICTITIOUS_WAGON:
            position += 1
            continue

        if token.kind != TokenKind.VEHICLE:
            continue

        wagon = parse_vehicle_token(token.value, current_sector, position)
        position += 1
        if wagon:
            wagons.append(wagon)

    if not wagons:
        return wagons, position

    # Group offers such as '(...)#NF' belong to the last real wagon only
    group_offers = _GROUP_OFFER_PATTERN.search(group_content)
    if group_offers:
        for attribute in parse_offer_codes(group_offers.group(1)):
            wagons[-1].add_attribute(attribute)

    parenthesis = _GROUP_PARENTHESIS_PATTERN.search(group_content)
    if parenthesis:
        if parenthesis.start() == 0:
            wagons[0].no_access_to_previous = True
            wagons[0].no_access_message = GROUP_NO_PASSAGE_MESSAGE
        if parenthesis.end() == len(group_content):
            wagons[-1].no_access_to_next = True
            wagons[-1].no_access_message = GROUP_NO_PASSAGE_MESSAGE

    return wagons, position


def _default_no_access_message(wagon: TrainWagon) -> Optional[str]:
    if wagon.no_access_to_next:
        return NO_PASSAGE_NEXT_MESSAGE
    if wagon.no_access_to_previous:
        return NO_PASSAGE_PREVIOUS_MESSAGE
    return None


def _clear_no_access(wagon: TrainWagon, previous_side: bool) -> None:
    """Clear the no-passage flag on one side along with the wagon's message."""
    if previous_side:
        wagon.no_access_to_previous = False
    else:
        wagon.no_access_to_next = False
    wagon.no_access_message = None


class FormationParser:
    """Parser for formation short strings."""

    def parse_formation_string(self, formation_string: Optional[str]) -> List[TrainSection]:
        """Decode a formation string into finalized, ordered sections."""
        if not isinstance(formation_string, str) or not formation_string.strip():
            logging.warning("Empty formation string received")
            return []

        sector_map: Dict[str, List[TrainWagon]] = {}
        current_sector = ""
        position = 0

        if "@" in formation_string:
            for segment in _SECTOR_SPLIT_PATTERN.split(formation_string):
                if not segment.strip():
                    continue

                sector_match = _SECTOR_PATTERN.search(segment)
                if sector_match:
                    current_sector = sector_match.group(1)
                    sector_map.setdefault(current_sector, [])
                    segment = segment[sector_match.start() + 2:]

                position = self._process_segment(segment, current_sector, position, sector_map)
        else:
            content = extract_bracket_content(formation_string, "[", "]")
            if not content:
                content = formation_string
            position = self._process_segment(content, current_sector, position, sector_map)

        sections = self.assemble_sections(sector_map)
        return self.finalize_train_sections(sections)

    def _process_segment(
        self,
        segment: str,
        sector: str,
        position: int,
        sector_map: Dict[str, List[TrainWagon]],
    ) -> int:
        """Drain bracket groups, then decode loose tokens. Returns next position."""
        span = find_bracket_span(segment, "[", "]")
        while span is not None:
            start, end = span
            wagons, position = parse_vehicle_group(segment[start:end], sector, position)
            if wagons:
                sector_map.setdefault(sector, []).extend(wagons)
            segment = segment[:start - 1] + segment[end + 1:]
            span = find_bracket_span(segment, "[", "]")

        for raw_token in _LOOSE_TOKEN_SPLIT_PATTERN.split(segment):
            token = raw_token.strip()
            if not token:
                continue
            if token == "F":
                position += 1
            elif is_potential_wagon_token(token):
                wagon = parse_vehicle_token(token, sector, position)
                if wagon:
                    sector_map.setdefault(sector, []).append(wagon)
                    position += 1

        return position

    def assemble_sections(self, sector_map: Dict[str, List[TrainWagon]]) -> List[TrainSection]:
        """Turn the sector map into sections, in first-seen order, dropping empty ones."""
        return [
            TrainSection(sector=sector, wagons=list(wagons))
            for sector, wagons in sector_map.items()
            if wagons
        ]

    def finalize_train_sections(self, sections: List[TrainSection]) -> List[TrainSection]:
        """
        Resequence positions over the whole train and make no-passage
        flags consistent between neighbours.

        Locomotives lose their status codes and never take part in
        no-passage borders; the wagon facing a locomotive loses its flag
        on that side as well.
        """
        sections = [section for section in sections if section.wagons]
        all_wagons = [wagon for section in sections for wagon in section.wagons]

        for wagon in all_wagons:
            if not wagon.no_access_message:
                wagon.no_access_message = _default_no_access_message(wagon)

        previous: Optional[TrainWagon] = None
        for position, wagon in enumerate(all_wagons):
            wagon.position = position

            if wagon.is_locomotive:
                wagon.status_codes = []

            if previous is not None:
                if wagon.is_locomotive or previous.is_locomotive:
                    _clear_no_access(previous, previous_side=False)
                    _clear_no_access(wagon, previous_side=True)
                elif previous.no_access_to_next or wagon.no_access_to_previous:
                    previous.no_access_to_next = True
                    wagon.no_access_to_previous = True
                    if not previous.no_access_message:
                        previous.no_access_message = NO_PASSAGE_NEXT_MESSAGE
                    if not wagon.no_access_message:
                        wagon.no_access_message = NO_PASSAGE_PREVIOUS_MESSAGE

            previous = wagon

        # Outer edges of the train have no neighbour to clear against
        for wagon in all_wagons:
            if wagon.is_locomotive:
                wagon.no_access_to_previous = False
                wagon.no_access_to_next = False
                wagon.no_access_message = None

        logging.debug(
            f"FINALIZE: {len(sections)} sections, {len(all_wagons)} wagons "
            f"[{', '.join(section.sector or '-' for section in sections)}]"
        )
        return sections

    def determine_travel_direction(
        self, formation_string: Optional[str], vehicle_sectors: Optional[str]
    ) -> TravelDirection:
        """
        Compare the visual sector order with the first vehicle's sectors.

        Only the edge sectors are checked, so a first vehicle standing in
        an interior sector always yields UNKNOWN.
        """
        if not isinstance(formation_string, str) or not formation_string.strip():
            return TravelDirection.UNKNOWN
        if not isinstance(vehicle_sectors, str) or not vehicle_sectors:
            return TravelDirection.UNKNOWN

        visual_sectors = [
            section.sector
            for section in self.parse_formation_string(formation_string)
            if section.sector and section.sector.strip()
        ]
        if not visual_sectors:
            return TravelDirection.UNKNOWN

        sectors = [s.strip() for s in vehicle_sectors.split(",") if s.strip()]
        if not sectors:
            return TravelDirection.UNKNOWN

        if visual_sectors[0] in sectors:
            return TravelDirection.LEFT
        if visual_sectors[-1] in sectors:
            return TravelDirection.RIGHT
        return TravelDirection.UNKNOWN


def decode_formation(formation_string: Optional[str]) -> List[TrainSection]:
    """Decode a formation short string into ordered train sections."""
    return FormationParser().parse_formation_string(formation_string)


def resolve_travel_direction(
    formation_string: Optional[str], vehicle_sectors: Optional[str]
) -> TravelDirection:
    """Resolve left/right/unknown from a formation string and a vehicle's sector field."""
    return FormationParser().determine_travel_direction(formation_string, vehicle_sectors)


def _paint(text: str, color: str, config: DisplayConfig) -> str:
    if config.use_color and color:
        return f"{color}{text}{Style.RESET_ALL}"
    return text


def format_wagon_line(wagon: TrainWagon, config: DisplayConfig) -> str:
    """Format one wagon as a single summary line."""
    parts = [f"{wagon.position:>3}", f"#{wagon.number or '-':<4}", f"{wagon.type_label:<24}"]
    parts.append(f"class {'/'.join(wagon.classes) or '-':<4}")

    if config.show_attributes and wagon.attributes:
        parts.append("[" + ", ".join(attr.code for attr in wagon.attributes) + "]")

    if config.show_status and wagon.status_codes:
        status_text = ", ".join(status.value for status in wagon.status_codes)
        color = Fore.RED if WagonStatus.CLOSED in wagon.status_codes else Fore.YELLOW
        parts.append(_paint(f"({status_text})", color, config))

    if wagon.no_access_to_previous or wagon.no_access_to_next:
        marker = ("|<" if wagon.no_access_to_previous else "") + (">|" if wagon.no_access_to_next else "")
        parts.append(_paint(f"{marker} {wagon.no_access_message or ''}".rstrip(), Fore.MAGENTA, config))

    line = " ".join(parts)
    if wagon.is_locomotive:
        return _paint(line, Style.DIM, config)
    return line


def render_sections(sections: List[TrainSection], config: DisplayConfig) -> List[str]:
    """Render decoded sections as printable lines."""
    lines = []
    for section in sections:
        header = f"Sector {section.sector}" if section.sector else "Sector (none)"
        lines.append(_paint(f"{header} - {len(section.wagons)} wagons", Fore.CYAN + Style.BRIGHT, config))
        for wagon in section.wagons:
            lines.append("  " + format_wagon_line(wagon, config))
    return lines


def _print_legend(legend) -> None:
    for title, items in (
        ("Wagon types", legend.wagon_types),
        ("Accessibility", legend.accessibility),
        ("Facilities", legend.facilities),
    ):
        if items:
            print(f"{title}: " + "; ".join(item.describe() for item in items))


def _run_response(args, config: DisplayConfig) -> int:
    """Decode a stored API response and print the selected stop."""
    from formationviz.trainJourney import build_legend, build_train_visualization, load_response

    response = load_response(args.response)
    visualization = build_train_visualization(response, args.stop)
    if visualization is None:
        logging.warning(f"No formation data found in {args.response}")
        return 1

    if args.json:
        print(json.dumps(visualization.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"Train {visualization.train_number} ({visualization.evu}) on {visualization.operation_date}")
    print("=" * 80)
    for index, stop in enumerate(visualization.stops):
        marker = ">" if index == visualization.current_stop_index else " "
        print(
            f"{marker} {index:>2} {stop.name:<30} track {stop.track or '-':<5} "
            f"direction {stop.travel_direction.value}"
        )
    print("")
    for line in render_sections(visualization.sections, config):
        print(line)

    if config.show_legend:
        print("")
        _print_legend(build_legend(visualization))

    logging.info(
        f"SUMMARY: {len(visualization.stops)} stops, "
        f"{sum(len(s.wagons) for s in visualization.sections)} wagons at {visualization.current_stop}"
    )
    return 0


def _run_strings(args, config: DisplayConfig) -> int:
    """Decode formation strings given on the command line."""
    from formationviz.trainJourney import build_legend_for_sections

    decoded = []
    for formation_string in args.formation:
        sections = decode_formation(formation_string)
        decoded.append((formation_string, sections))

    if args.json:
        payload = []
        for formation_string, sections in decoded:
            entry = {"formation": formation_string, "sections": [s.to_dict() for s in sections]}
            if args.sectors is not None:
                entry["travelDirection"] = resolve_travel_direction(formation_string, args.sectors).value
            payload.append(entry)
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        for formation_string, sections in decoded:
            print(f"Formation: {formation_string}")
            print("=" * 80)
            for line in render_sections(sections, config):
                print(line)
            if args.sectors is not None:
                direction = resolve_travel_direction(formation_string, args.sectors)
                print(f"Travel direction: {direction.value}")
            if config.show_legend:
                _print_legend(build_legend_for_sections(sections, has_sectors="@" in formation_string))
            print("")

    total_wagons = sum(len(s.wagons) for _, sections in decoded for s in sections)
    logging.info(f"SUMMARY: {len(decoded)} formation strings, {total_wagons} wagons decoded")
    return 0 if total_wagons > 0 else 1


def main(argv: Optional[List[str]] = None):
    """Main application entry point."""
    parser = argparse.ArgumentParser(
        description="Decode SBB/SKI+ formation short strings into sectors and wagons",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  formation-decoder "@A[1:1][WR:2]@B[2:3]"
  formation-decoder "@A[1:1]@C[2:2]@B[2:3]" --sectors B
  formation-decoder --response formations_full.json --stop 2 --legend
  formation-decoder "[1:1,2:2]" --json

Formation string markers:
  @X sector   [..] vehicle group   (..) no passage   F fictitious wagon
  - closed    > group boarding     = reserved for transit   % unserviced
        """,
    )

    parser.add_argument("formation", nargs="*", help="Formation short string(s) to decode")
    parser.add_argument("--response", type=Path, help="Path to a stored formations API JSON response")
    parser.add_argument("--stop", type=int, default=0, help="Stop index to show for --response (default: 0)")
    parser.add_argument("--sectors", help="Comma-separated sectors of the first vehicle, prints travel direction")
    parser.add_argument("--json", action="store_true", help="Print the decoded formation as JSON")
    parser.add_argument("--legend", action="store_true", help="Print the legend for the decoded formation")
    parser.add_argument("--config", type=Path, help="Path to display configuration JSON file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if not args.formation and args.response is None:
        parser.error("give at least one formation string or --response FILE")

    try:
        config = DisplayConfig.from_file(args.config)
        if args.legend:
            config.show_legend = True

        log_level = logging.DEBUG if args.debug else logging.INFO
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(levelname)s - %(message)s",
            handlers=[
                logging.FileHandler(config.log_file, encoding="utf-8"),
                # Keep stdout clean for JSON output
                logging.StreamHandler(sys.stderr if args.json else sys.stdout),
            ],
        )

        if args.response is not None:
            exit_code = _run_response(args, config)
        else:
            exit_code = _run_strings(args, config)

        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)
    except (OSError, ValueError, TypeError) as e:
        logging.error(f"Fatal error: {e}")
        if args.debug:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
