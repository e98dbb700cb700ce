# Record identifiers: random uuid4 strings
import re
import uuid
from typing import Iterable, List, Union

ID_LENGTH = 36
ID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def gen_id() -> str:
    """
    Generate a new record id
    """
    return str(uuid.uuid4())


def is_valid_id(value) -> bool:
    """
    :param value: candidate id
    :return: whether value is a syntactically valid record id
    """
    return isinstance(value, str) and bool(ID_REGEX.match(value))


def split_ids(value: Union[str, Iterable[str], None], delimiter: str = ",") -> List[str]:
    """Split an "ids" argument into a list of ids
    :param value: delimiter separated string or a list of strings
    :param delimiter: separator
    :return: list of stripped, non-empty ids (order is kept, duplicates are dropped)
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(delimiter)
    result = []
    for item in value:
        item = str(item).strip()
        if item and item not in result:
            result.append(item)
    return result
