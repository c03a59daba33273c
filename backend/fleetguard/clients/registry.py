"""
Website registry: resolves a website id to a ScanTarget
"""

from typing import Dict, Optional, Protocol

from fleetguard.core.database.connection_manager import DatabaseConnectionManager
from fleetguard.core.error_handling.exceptions import TargetNotFoundException
from fleetguard.core.target import ScanTarget
from fleetguard.models.website import Website


class WebsiteRegistry(Protocol):
    def get_target(self, website_id: int) -> ScanTarget:
        """Raise TargetNotFoundException when the website is unknown"""
        ...


class SqlWebsiteRegistry:
    """Reads targets from the ``websites`` table"""

    def __init__(self, connection_manager: DatabaseConnectionManager):
        self.connection_manager = connection_manager

    def get_target(self, website_id: int) -> ScanTarget:
        with self.connection_manager.get_session() as session:
            website = session.get(Website, website_id)
            if website is None:
                raise TargetNotFoundException(website_id)
            return ScanTarget(
                website_id=website.id,
                url=website.url,
                management_api_key=website.management_api_key,
                name=website.name,
            )


class InMemoryWebsiteRegistry:
    def __init__(self, targets: Optional[Dict[int, ScanTarget]] = None):
        self.targets: Dict[int, ScanTarget] = dict(targets or {})

    def add(self, target: ScanTarget) -> None:
        self.targets[target.website_id] = target

    def get_target(self, website_id: int) -> ScanTarget:
        try:
            return self.targets[website_id]
        except KeyError:
            raise TargetNotFoundException(website_id)
