"""Service wiring shared by the HTTP routers and the live namespace."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from buzzcore.domain.directory.repo import InMemoryUserDirectory, PostgresUserDirectory, UserDirectory
from buzzcore.domain.discovery.service import CandidateDiscoveryEngine
from buzzcore.domain.live.calls import CallSignalRelay
from buzzcore.domain.live.router import SessionRouter
from buzzcore.domain.live.sockets import SocketTransport
from buzzcore.domain.meet.service import MeetNegotiator
from buzzcore.domain.meet.venues import OverpassVenueSearch, VenueSearch
from buzzcore.domain.notifications.service import (
	InMemoryNotificationStore,
	NotificationService,
	NotificationStore,
	PostgresNotificationStore,
)
from buzzcore.domain.presence.mirror import RedisPresenceMirror
from buzzcore.domain.presence.registry import InMemoryPresenceRegistry
from buzzcore.domain.relationships.repo import (
	InMemoryRelationshipStore,
	PostgresRelationshipStore,
	RelationshipStore,
)
from buzzcore.domain.relationships.service import RelationshipStateMachine
from buzzcore.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class Container:
	directory: UserDirectory
	relationship_store: RelationshipStore
	notifications: NotificationService
	presence: InMemoryPresenceRegistry
	transport: SocketTransport
	router: SessionRouter
	calls: CallSignalRelay
	relationships: RelationshipStateMachine
	discovery: CandidateDiscoveryEngine
	meet: MeetNegotiator
	http: Optional[httpx.AsyncClient] = None

	async def aclose(self) -> None:
		await self.meet.shutdown()
		if self.http is not None:
			await self.http.aclose()


def build_container(
	*,
	directory: Optional[UserDirectory] = None,
	relationship_store: Optional[RelationshipStore] = None,
	notification_store: Optional[NotificationStore] = None,
	venues: Optional[VenueSearch] = None,
	transport: Optional[SocketTransport] = None,
) -> Container:
	"""Assemble the core. Unspecified collaborators follow `settings.storage_backend`."""
	use_postgres = settings.storage_backend.lower() == "postgres"
	if directory is None:
		directory = PostgresUserDirectory() if use_postgres else InMemoryUserDirectory()
	if relationship_store is None:
		relationship_store = PostgresRelationshipStore() if use_postgres else InMemoryRelationshipStore()
	if notification_store is None:
		notification_store = PostgresNotificationStore() if use_postgres else InMemoryNotificationStore()
	http: Optional[httpx.AsyncClient] = None
	if venues is None:
		http = httpx.AsyncClient(headers={"User-Agent": settings.service_name})
		venues = OverpassVenueSearch(http=http)

	presence = InMemoryPresenceRegistry()
	if settings.presence_mirror_enabled:
		presence.add_listener(RedisPresenceMirror())
	transport = transport or SocketTransport()
	router = SessionRouter(presence, transport)
	notifications = NotificationService(notification_store, router)
	relationships = RelationshipStateMachine(
		relationship_store,
		directory=directory,
		notifications=notifications,
		live=router,
		buzz_cooldown_seconds=settings.buzz_cooldown_seconds,
	)
	discovery = CandidateDiscoveryEngine(directory, relationship_store)
	meet = MeetNegotiator(router, venues, directory=directory, relationships=relationships)
	logger.info("core assembled", extra={"storage": "postgres" if use_postgres else "memory"})
	return Container(
		directory=directory,
		relationship_store=relationship_store,
		notifications=notifications,
		presence=presence,
		transport=transport,
		router=router,
		calls=CallSignalRelay(router),
		relationships=relationships,
		discovery=discovery,
		meet=meet,
		http=http,
	)


_container: Optional[Container] = None


def get_container() -> Container:
	global _container
	if _container is None:
		_container = build_container()
	return _container


def set_container(container: Optional[Container]) -> None:
	global _container
	_container = container
