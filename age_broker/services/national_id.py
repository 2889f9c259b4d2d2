"""Age derivation from a national identifier (kennitala).

The identifier is ``DDMMYY-NNNC``: birth day, month and two-digit year,
three serial/check digits and a century digit at index 9 of the stripped
string. Century 0 means the 2000s; any other digit (historically 9) means
the 1900s. This two-bucket mapping does not cover identifiers outside
1900-2099 and is kept that narrow on purpose.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from ..core.errors import MalformedIdentifierError

IDENTIFIER_LENGTH = 10
CENTURY_DIGIT_INDEX = 9


@dataclass(frozen=True)
class NationalIdentifier:
    day: int
    month: int
    year_two_digits: int
    century_digit: int

    @property
    def century(self) -> int:
        return 2000 if self.century_digit == 0 else 1900

    @property
    def birth_year(self) -> int:
        return self.century + self.year_two_digits

    @property
    def birth_date(self) -> date:
        try:
            return date(self.birth_year, self.month, self.day)
        except ValueError as exc:
            raise MalformedIdentifierError("Identifier does not encode a valid birth date") from exc


def strip_identifier(identifier: str) -> str:
    return (identifier or "").strip().replace("-", "")


def parse_identifier(identifier: str) -> NationalIdentifier:
    clean = strip_identifier(identifier)
    if len(clean) != IDENTIFIER_LENGTH or not (clean.isascii() and clean.isdigit()):
        raise MalformedIdentifierError(
            f"Identifier must be {IDENTIFIER_LENGTH} digits after removing hyphens"
        )
    parsed = NationalIdentifier(
        day=int(clean[0:2]),
        month=int(clean[2:4]),
        year_two_digits=int(clean[4:6]),
        century_digit=int(clean[CENTURY_DIGIT_INDEX]),
    )
    _ = parsed.birth_date  # raises on impossible dates such as 31 February
    return parsed


def age_on(born: date, today: date) -> int:
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def compute_age(identifier: str, now: date) -> int:
    born = parse_identifier(identifier).birth_date
    if born > now:
        raise MalformedIdentifierError("Birth date cannot be in the future")
    return age_on(born, now)
