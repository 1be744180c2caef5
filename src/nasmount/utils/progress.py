#!/usr/bin/env python3
"""
Progress tracking utilities for nas-mount

Shows a progress bar while shares are mounted or repaired one by one.
The bar is hidden when output is not a terminal.
"""

import logging
from enum import Enum
from typing import Union

from tqdm import tqdm

logger = logging.getLogger(__name__)


class OperationType(Enum):
    """Types of operations that can be tracked"""
    MOUNT = "mount"
    REPAIR = "repair"


class ProgressTracker:
    """Class to track and display progress of a per-share operation"""

    def __init__(self,
                 operation_type: Union[str, OperationType],
                 total: int = 0,
                 desc: str = "",
                 unit: str = "shares",
                 disable: bool = None,
                 autostart: bool = True):
        """Initialize a progress tracker

        Args:
            operation_type: Type of operation being tracked (mount, repair, etc.)
            total: Total number of items to process
            desc: Description of the operation
            unit: Unit of items being processed
            disable: True to hide the bar; None hides it when not on a TTY
            autostart: Whether to start the progress bar immediately
        """
        self.operation_type = operation_type.value if isinstance(operation_type, OperationType) else operation_type
        self.total = total
        self.desc = desc or f"Processing {self.operation_type}"
        self.unit = unit
        self.disable = disable
        self.current = 0
        self.active = False
        self.pbar = None

        if autostart:
            self.start()

    def start(self) -> 'ProgressTracker':
        """Start the progress tracker"""
        self.active = True
        self.pbar = tqdm(
            total=self.total,
            desc=self.desc,
            unit=self.unit,
            disable=self.disable,
            leave=False,
            bar_format='{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt}'
        )
        return self

    def update(self, n: int = 1, status: str = "") -> None:
        """Update the progress tracker

        Args:
            n: Number of items to increment by
            status: Status text to display
        """
        if not self.active:
            return
        self.current += n
        self.pbar.update(n)
        if status:
            self.pbar.set_postfix_str(status)

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        self.pbar.close()

    def __enter__(self) -> 'ProgressTracker':
        """Context manager enter method"""
        if not self.active:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit method"""
        self.close()
