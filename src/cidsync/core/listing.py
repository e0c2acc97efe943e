"""
CID list acquisition: read CIDs from a file or from the pins of an endpoint.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union

from cidsync.core.client import AcquisitionError, IPFSClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CIDRecord:
    """A CID to synchronize"""

    cid: str


def parse_cids(lines: Iterable[str]) -> List[CIDRecord]:
    """Turn lines of text into CID records, skipping blanks and comments"""
    records = []
    for line in lines:
        cid = line.strip()
        if not cid or cid.startswith("#"):
            continue
        records.append(CIDRecord(cid=cid))
    return records


def read_cids_from_file(path: Union[str, Path]) -> List[CIDRecord]:
    """
    Read CIDs from a file, one per line

    Args:
        path: Path to the file

    Returns:
        List of CIDRecord objects in file order
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            records = parse_cids(f)
    except (OSError, UnicodeDecodeError) as e:
        raise AcquisitionError(f"Cannot read CIDs from {path}: {e}") from e

    logger.debug(f"Read {len(records)} CIDs from {path}")
    return records


def list_source_cids(client: IPFSClient) -> List[CIDRecord]:
    """Collect every CID pinned on an endpoint"""
    records = [CIDRecord(cid=cid) for cid in client.pin_ls()]
    logger.debug(f"Listed {len(records)} CIDs from {client.base_url}")
    return records


def write_cids_to_file(path: Union[str, Path], cids: Iterable[str]):
    """Write CIDs to a file, one per line"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for cid in cids:
            f.write(f"{cid}\n")
