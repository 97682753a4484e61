from dataclasses import dataclass

from src.smart_bookmarks.core.services import AuthClientService


@dataclass
class ApplicationDependencies:
    auth_client_service: AuthClientService
