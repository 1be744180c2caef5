#!/usr/bin/env python3
"""
Protocol adapter factory
"""

import logging
from typing import Dict, Optional, Type

from .base import ProtocolAdapter
from .smb import SmbAdapter
from .nfs import NfsAdapter

logger = logging.getLogger(__name__)

ADAPTERS: Dict[str, Type[ProtocolAdapter]] = {
    'smb': SmbAdapter,
    'cifs': SmbAdapter,
    'nfs': NfsAdapter,
}


def get_adapter(protocol: str) -> ProtocolAdapter:
    """Create the adapter for a protocol name (smb, cifs or nfs)"""
    try:
        cls = ADAPTERS[protocol.lower()]
    except KeyError:
        raise ValueError(f"Unsupported protocol: {protocol}") from None
    return cls()


def adapter_for_source(source: str) -> Optional[ProtocolAdapter]:
    """Guess the adapter from an fstab source string"""
    if source.startswith('//'):
        return SmbAdapter()
    if ':' in source and not source.startswith('/'):
        return NfsAdapter()
    logger.debug(f"No protocol adapter for source {source}")
    return None
