"""
Infinite scroll: ask for the next page when the viewport nears the bottom.
"""
import asyncio
from typing import Optional

from .log import get_logger
from .schemas import ScrollPosition
from .search import CitySearchDriver

logger = get_logger(__name__)


def near_bottom(position: ScrollPosition, threshold_px: float) -> bool:
    return position.viewport_height + position.scroll_y >= position.document_height - threshold_px


class InfiniteScrollTrigger:
    """
    Requests are not debounced. Repeated scroll events while a page is in
    flight are no-ops because the driver closes its gate synchronously.
    """

    def __init__(self, driver: CitySearchDriver, threshold_px: float = 100) -> None:
        self._driver = driver
        self.threshold_px = threshold_px

    def on_scroll(self, position: ScrollPosition) -> Optional[asyncio.Task]:
        if not near_bottom(position, self.threshold_px):
            return None
        task = self._driver.request_next_page()
        if task is not None:
            logger.debug("next_page_requested", page=self._driver.state.page)
        return task
