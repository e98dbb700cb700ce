"""
Synthetic records for an EntitySchema, used to seed test data.

Every generated value satisfies the constraints of its own field.
String fields with a pattern are generated with a heuristic for the field's
semantic hint (email, url, numeric, free text) and, when the heuristic value
doesn't satisfy the field, with rstr, which produces strings matching a regex.
"""

import datetime
import random
import re
import string
from typing import Any, Dict, List, Optional

import rstr
from faker import Faker

import autocrud
from .errors import GenerationError
from .fields import EntitySchema, FieldKind, FieldSpec, SemanticHint
from .ids import gen_id

DEFAULT_MIN = 0
DEFAULT_MAX = 100
DEFAULT_MIN_LENGTH = 5
DEFAULT_MAX_LENGTH = 20
MAX_ATTEMPTS = 25


def infer_hint(pattern: str) -> Optional[SemanticHint]:
    """Guess the semantic hint of a pattern from its text

    This is only used for fields that don't declare a hint.
    The checks are done in order, the first match wins.
    """
    if "@" in pattern:
        return SemanticHint.EMAIL
    if "https?" in pattern:
        return SemanticHint.URL
    if pattern.startswith("^\\d") or "\\d+" in pattern:
        return SemanticHint.NUMERIC
    if "[A-Za-z" in pattern and "\\s" in pattern:
        return SemanticHint.FREE_TEXT
    return None


class SyntheticRecordGenerator:
    """
    Generates random records that satisfy the constraints of an EntitySchema
    """

    def __init__(self, schema: EntitySchema, seed: Optional[int] = None) -> None:
        """
        :param schema: EntitySchema
        :param seed: random seed for reproducible records
        """
        self.schema = schema
        self.seed = seed
        self.random = random.Random(seed)
        self.faker = Faker()
        if seed is not None:
            self.faker.seed_instance(seed)
        self.rstr = rstr.Rstr(self.random)

    def records(self, count: int) -> List[Dict[str, Any]]:
        return [self.record() for _ in range(count)]

    def record(self) -> Dict[str, Any]:
        return {name: self.value(name, spec) for name, spec in self.schema.items()}

    def value(self, name: str, spec: FieldSpec) -> Any:
        """
        :param name: field name
        :param spec: FieldSpec
        :return: a value satisfying the field's constraints
        """
        if spec.kind == FieldKind.STRING:
            return self.string(name, spec)
        if spec.kind == FieldKind.NUMBER:
            return self.number(spec)
        if spec.kind == FieldKind.BOOLEAN:
            return self.random.random() < 0.5
        if spec.kind == FieldKind.DATE:
            now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None, microsecond=0)
            return now - datetime.timedelta(seconds=self.random.randint(1, 365 * 24 * 3600))
        if spec.kind == FieldKind.REFERENCE:
            # a valid id, not necessarily an existing record
            return gen_id()
        if spec.kind == FieldKind.ARRAY_OF_STRING:
            return self.faker.words(nb=self.random.randint(1, 3))
        return None

    def number(self, spec: FieldSpec):
        low = spec.minimum.value if spec.minimum else DEFAULT_MIN
        high = spec.maximum.value if spec.maximum else DEFAULT_MAX
        if float(low).is_integer() and float(high).is_integer():
            return self.random.randint(int(low), int(high))
        return self.random.uniform(low, high)

    def string(self, name: str, spec: FieldSpec) -> str:
        if spec.pattern is None:
            return self.text(spec)

        hint = spec.hint or infer_hint(spec.pattern.value)
        heuristic = {
            SemanticHint.EMAIL: self.email,
            SemanticHint.URL: self.url,
            SemanticHint.NUMERIC: self.numeric,
            SemanticHint.FREE_TEXT: self.words,
        }.get(hint)

        if heuristic is not None:
            for attempt in range(MAX_ATTEMPTS):
                candidate = heuristic(spec, attempt)
                if spec.check(name, candidate) is None:
                    return candidate
            autocrud.log.debug(f'No {hint.value} value satisfies "{name}" of {self.schema.label}, using the pattern')

        return self.from_pattern(name, spec)

    def from_pattern(self, name: str, spec: FieldSpec) -> str:
        """
        Generate strings matching the pattern until one satisfies the length constraints as well
        """
        for _ in range(MAX_ATTEMPTS):
            try:
                candidate = self.rstr.xeger(spec.pattern.value)
            except Exception as exc:
                # unsupported regex constructs (eg. lookarounds)
                raise GenerationError(f'Can\'t generate a value for pattern "{spec.pattern.value}" ({name}): {exc}')
            if spec.check(name, candidate) is None:
                return candidate
        raise GenerationError(f'Can\'t generate a value for "{name}" of {self.schema.label} satisfying its constraints')

    def _length_bounds(self, spec: FieldSpec):
        min_length = spec.min_length.value if spec.min_length else DEFAULT_MIN_LENGTH
        max_length = spec.max_length.value if spec.max_length else max(DEFAULT_MAX_LENGTH, min_length)
        return min_length, max_length

    def email(self, spec: FieldSpec, attempt: int = 0) -> str:
        return self.faker.email().lower()

    def url(self, spec: FieldSpec, attempt: int = 0) -> str:
        min_length = spec.min_length.value if spec.min_length else 0
        max_length = spec.max_length.value if spec.max_length else 100
        result = f"https://{self.faker.domain_name()}/{self.faker.slug()}"
        while len(result) < min_length:
            result += self.random.choice(string.ascii_lowercase + string.digits)
        if len(result) > max_length:
            result = result[:max_length].rstrip("/-")
        return result

    def numeric(self, spec: FieldSpec, attempt: int = 0) -> str:
        length = spec.min_length.value if spec.min_length else DEFAULT_MIN_LENGTH
        return "".join(self.random.choice(string.digits) for _ in range(length))

    def words(self, spec: FieldSpec, attempt: int = 0) -> str:
        """
        Letters and spaces only, the minimum length grows with every attempt
        """
        min_length, max_length = self._length_bounds(spec)
        target = min(max_length, min_length * (attempt + 1))
        text = " ".join(self.faker.words(nb=3))
        while len(text) < target:
            text += " " + " ".join(self.faker.words(nb=3))
        return _truncate(text, max_length)

    def text(self, spec: FieldSpec, attempt: int = 0) -> str:
        """
        Sentences are appended until the minimum length is met, the text is truncated at a word boundary
        """
        min_length, max_length = self._length_bounds(spec)
        text = self.faker.sentence()
        while len(text) < min_length:
            text += " " + self.faker.sentence()
        text = _truncate(text, max_length)
        if len(text) < min_length:
            # a single long word, cut it
            while len(text) < max_length:
                text += " " + self.faker.sentence()
            text = text[:max_length]
            if text.endswith(" "):
                text = text[:-1] + "."
        return text


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    text = text[:max_length]
    last_space = text.rfind(" ")
    if last_space > 0:
        text = text[:last_space]
    return re.sub(r"\s+$", "", text)
