"""
Sync logging module for cidsync.
Keeps a history of finished sync runs.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional


@dataclass
class RunLogEntry:
    """Single sync run log entry"""
    timestamp: str
    source: str
    destination: str
    total: int
    synced: int
    failed: int
    duration: float
    batch_size: int
    failed_cids: List[str] = field(default_factory=list)


class TransferLogger:
    """Manages sync run logging"""

    def __init__(self, log_dir: str = None):
        """
        Initialize transfer logger

        Args:
            log_dir: Directory to store log files (default: ~/.config/cidsync/logs)
        """
        if log_dir is None:
            config_dir = os.path.expanduser("~/.config/cidsync")
            log_dir = os.path.join(config_dir, "logs")

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _get_log_file(self, date: Optional[str] = None) -> Path:
        """Get the log file path for a date (default: today)"""
        if date is None:
            date = datetime.now().strftime("%Y-%m-%d")
        return self.log_dir / f"sync_log_{date}.json"

    def _load_logs(self, date: Optional[str] = None) -> List[dict]:
        """Load existing logs for a date"""
        log_file = self._get_log_file(date)
        if log_file.exists():
            try:
                with open(log_file, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except json.JSONDecodeError:
                return []
        return []

    def add_entry(self, entry: RunLogEntry):
        """Add a new run log entry"""
        logs = self._load_logs()
        logs.append(asdict(entry))

        with open(self._get_log_file(), 'w', encoding='utf-8') as f:
            json.dump(logs, f, indent=2, ensure_ascii=False)

    def get_entries(self, date: Optional[str] = None) -> List[RunLogEntry]:
        """
        Get run log entries for a specific date

        Args:
            date: Date string in YYYY-MM-DD format (default: today)

        Returns:
            List of RunLogEntry objects
        """
        try:
            return [RunLogEntry(**entry) for entry in self._load_logs(date)]
        except TypeError:
            return []

    def get_log_dates(self) -> List[str]:
        """Get list of dates that have sync logs"""
        dates = [
            log_file.stem.rsplit("_", 1)[-1]
            for log_file in self.log_dir.glob("sync_log_*.json")
        ]
        return sorted(dates)
