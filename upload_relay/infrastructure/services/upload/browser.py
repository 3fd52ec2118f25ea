"""
File browser registry.

UI elements register a picker callback under their element id; an
``open-file-browser`` command triggers the picker if the element exists.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List

from ....core.interfaces.upload import IFileBrowser

logger = logging.getLogger(__name__)

Picker = Callable[[], Any]


class ElementFileBrowser(IFileBrowser):
    """Maps element ids to native file picker callbacks."""

    def __init__(self) -> None:
        self._elements: Dict[str, Picker] = {}

    def register_element(self, element_id: str, picker: Picker) -> None:
        self._elements[element_id] = picker

    def unregister_element(self, element_id: str) -> bool:
        return self._elements.pop(element_id, None) is not None

    def elements(self) -> List[str]:
        return list(self._elements)

    async def open(self, element_id: str) -> bool:
        picker = self._elements.get(element_id)
        if picker is None:
            return False

        logger.info(f"browseClick ({element_id})")
        result = picker()
        if asyncio.iscoroutine(result):
            await result
        return True
