"""One-shot deduplication of the company name list."""

from pathlib import Path
from typing import Dict, List, Tuple, Union

from loguru import logger

from asin_mapper.inputs import BRAND_COLUMN, read_table
from asin_mapper.writer import IncrementalWriter


def split_duplicates(names: List[str]) -> Tuple[List[str], List[str]]:
    """Split names into first occurrences and names seen more than once.

    Both lists keep first-seen order.
    """
    seen = set()
    duplicates: Dict[str, None] = {}
    unique = []
    for name in names:
        if name in seen:
            duplicates.setdefault(name, None)
        else:
            seen.add(name)
            unique.append(name)
    return unique, list(duplicates)


def remove_duplicates(
    input_path: Union[str, Path],
    deduped_path: Union[str, Path],
    duplicates_path: Union[str, Path],
    column: str = BRAND_COLUMN,
) -> Dict[str, int]:
    """Write the deduplicated name list and the list of repeated names."""
    df = read_table(input_path, [column])
    names = [value.strip() for value in df[column].tolist() if value and value.strip()]
    unique, duplicates = split_duplicates(names)

    IncrementalWriter(deduped_path, [column]).write_all([{column: name} for name in unique])
    logger.info(f"Deduplicated list written to {deduped_path}")

    IncrementalWriter(duplicates_path, [column]).write_all([{column: name} for name in duplicates])
    logger.info(f"Duplicates list written to {duplicates_path}")

    return {"total": len(names), "unique": len(unique), "duplicates": len(duplicates)}
