"""Course lifecycle and integration activation.

The coordinator owns the course's activated-service set. Each integration
is activated, deactivated and refreshed independently: a failure in one is
logged with its cause and never prevents the others from running, nor the
course from becoming RUNNING. All state updates for a course happen under
that course's lock, on freshly loaded state, so concurrent calls cannot
lose each other's updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Protocol

from courseflow.errors import ConfigurationError
from courseflow.language import validate_environment
from courseflow.locking import KeyedLock
from courseflow.model import Course, Lifecycle, ServiceTag
from courseflow.storage.repository import Repository

logger = logging.getLogger(__name__)


class Integration(Protocol):
    tag: ServiceTag

    def activate(self, course: Course) -> None: ...

    def deactivate(self, course: Course) -> None: ...

    def refresh(self, course: Course) -> int: ...


@dataclass
class RefreshOutcome:
    appended: dict[ServiceTag, int] = field(default_factory=dict)
    failed: dict[ServiceTag, str] = field(default_factory=dict)


class ActivationCoordinator:
    def __init__(
        self,
        repository: Repository,
        integrations: Mapping[ServiceTag, Integration],
        locks: KeyedLock | None = None,
    ) -> None:
        unknown = [tag for tag in integrations if not isinstance(tag, ServiceTag)]
        if unknown:
            raise ConfigurationError(f"Unknown services: {unknown}")
        self._repository = repository
        self._integrations = dict(integrations)
        self._locks = locks or KeyedLock()

    def _integration(self, tag: ServiceTag) -> Integration:
        integration = self._integrations.get(tag)
        if integration is None:
            raise ConfigurationError(f"Service {tag} is not configured")
        return integration

    def activate(self, course: Course) -> frozenset[ServiceTag]:
        """Activate every configured integration and start the course.

        Returns the course's activated services afterwards. Services that
        are already active are skipped, failing ones are left out.
        """
        validate_environment(course.language, course.testing_language, course.testing_framework)

        with self._locks.hold(course.id):
            current = self._repository.get_course_by_id(course.id)
            activated = set(current.state.activated_services)

            for tag, integration in self._integrations.items():
                if tag in activated:
                    logger.info(f"{tag.value} is already active for {current.identity} course")
                    continue
                try:
                    integration.activate(current)
                except Exception as e:
                    logger.error(
                        f"{tag.value} activation went bad for {current.identity} course due to: {e!r}",
                        exc_info=True,
                    )
                    continue
                activated.add(tag)

            logger.info(
                f"Changing course {current.identity} status to running "
                f"with activated services: {sorted(t.value for t in activated)}"
            )
            updated = self._repository.update_course_state(
                course.id, lifecycle=Lifecycle.RUNNING, activated_services=activated
            )
        return updated.state.activated_services

    def activate_service(self, course: Course, tag: ServiceTag) -> bool:
        """Activate a single integration on a running course.

        Returns False if it was already active. Activation errors propagate.
        """
        integration = self._integration(tag)

        with self._locks.hold(course.id):
            current = self._repository.get_course_by_id(course.id)
            if current.state.lifecycle != Lifecycle.RUNNING:
                raise ConfigurationError(f"Course {current.identity} is not started yet")
            if tag in current.state.activated_services:
                logger.info(f"{tag.value} is already integrated with {current.identity} course")
                return False

            integration.activate(current)
            self._repository.update_course_state(
                course.id,
                activated_services=current.state.activated_services | {tag},
            )
        logger.info(f"{tag.value} was activated for {current.identity} course")
        return True

    def deactivate(
        self, course: Course, services: set[ServiceTag] | None = None
    ) -> frozenset[ServiceTag]:
        """Deactivate ``services`` (all activated ones by default).

        Failures are logged and leave the service in the activated set.
        Returns the services that were deactivated.
        """
        with self._locks.hold(course.id):
            current = self._repository.get_course_by_id(course.id)
            targets = current.state.activated_services
            if services is not None:
                targets = targets & services

            deactivated: set[ServiceTag] = set()
            for tag in sorted(targets, key=lambda t: t.value):
                integration = self._integrations.get(tag)
                if integration is None:
                    logger.warning(f"{tag.value} is not configured, dropping it from {current.identity}")
                    deactivated.add(tag)
                    continue
                try:
                    integration.deactivate(current)
                except Exception as e:
                    logger.error(
                        f"{tag.value} deactivation went bad for {current.identity} course due to: {e!r}",
                        exc_info=True,
                    )
                    continue
                deactivated.add(tag)

            if deactivated:
                logger.info(
                    f"Removing {sorted(t.value for t in deactivated)} "
                    f"from activated services of {current.identity} course"
                )
                self._repository.update_course_state(
                    course.id,
                    activated_services=current.state.activated_services - deactivated,
                )
        return frozenset(deactivated)

    def deactivate_service(self, course: Course, tag: ServiceTag) -> bool:
        self._integration(tag)
        return tag in self.deactivate(course, {tag})

    def refresh(self, course: Course) -> RefreshOutcome:
        """Synchronize results of every activated integration of a running course."""
        with self._locks.hold(course.id):
            current = self._repository.get_course_by_id(course.id)
            if current.state.lifecycle != Lifecycle.RUNNING:
                raise ConfigurationError(
                    f"Course {current.identity} is not running to be synchronized"
                )

            outcome = RefreshOutcome()
            for tag in sorted(current.state.activated_services, key=lambda t: t.value):
                integration = self._integrations.get(tag)
                if integration is None:
                    continue
                try:
                    outcome.appended[tag] = integration.refresh(current)
                except Exception as e:
                    outcome.failed[tag] = str(e)
                    logger.error(
                        f"{tag.value} refresh went bad for {current.identity} course "
                        f"of {current.user.nickname} user due to: {e!r}"
                    )
        return outcome
